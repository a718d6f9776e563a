"""
Raw HTTP client for the ingress and admin APIs of the cluster under test
"""
import json
import logging
from typing import Dict, List, Optional
import httpx
from ..models import Program, MAX_LAYERS
from ..errors import DispatchError, RegistrationError, QueryError

logger = logging.getLogger(__name__)

ACCEPTED_SEND_STATUS = (200, 202)

COUNTER_QUERY = (
    "select service_key, value_utf8 from state "
    "where key = 'counter' and service_name = '{service_name}'"
)


def interpreter_service_name(layer: int) -> str:
    return f"ObjectInterpreterL{layer}"


class RestateClient:
    """
    Owns one keep-alive connection pool for a test run.

    Timeouts are enforced by the caller (see ErrorHandler.retry_with_timeout),
    so the underlying client is created without its own timeout.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, max_connections: int = 512):
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=None,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections
            ),
            headers={'Accept': 'application/json'}
        )

    async def __aenter__(self) -> 'RestateClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_interpreter(self, ingress_url: str, interpreter_id: str,
                               idempotency_key: str, program: Program) -> None:
        """Fire-and-forget a program to a layer 0 interpreter object"""
        url = f"{ingress_url.rstrip('/')}/{interpreter_service_name(0)}/{interpreter_id}/interpret/send"
        response = await self._client.post(
            url,
            json=program.to_dict(),
            headers={'idempotency-key': idempotency_key}
        )
        if response.status_code not in ACCEPTED_SEND_STATUS:
            raise DispatchError(f"Failed to send: {response.status_code}", status_code=response.status_code)

    async def ingress_healthy(self, ingress_url: str) -> bool:
        return await self._healthy(f"{ingress_url.rstrip('/')}/restate/health")

    async def admin_healthy(self, admin_url: str) -> bool:
        return await self._healthy(f"{admin_url.rstrip('/')}/health")

    async def _healthy(self, url: str) -> bool:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Health check {url} failed: {e}")
            return False
        return response.is_success

    async def register_deployment(self, admin_url: str, uri: str) -> None:
        response = await self._client.post(
            f"{admin_url.rstrip('/')}/deployments",
            json={'uri': uri}
        )
        if not response.is_success:
            raise RegistrationError(f"unable to register {uri} because: {response.text}")

    async def get_counts(self, admin_url: str, layer: int) -> Dict[str, int]:
        """Persisted counters of every object of a layer, by service key"""
        query = COUNTER_QUERY.format(service_name=interpreter_service_name(layer))
        response = await self._client.post(f"{admin_url.rstrip('/')}/query", json={'query': query})
        if not response.is_success:
            raise QueryError(f"Query for layer {layer} failed: {response.status_code} {response.text}")

        try:
            rows = response.json()['rows']
            return {row['service_key']: int(json.loads(row['value_utf8'])) for row in rows}
        except (KeyError, TypeError, ValueError) as e:
            raise QueryError(f"Unexpected query response for layer {layer}: {e}")

    async def get_all_counts(self, admin_url: str, num_interpreters: int,
                             num_layers: int = MAX_LAYERS) -> List[List[int]]:
        """Observed counters as a [layer][key] table, missing objects count 0"""
        counters = []
        for layer in range(num_layers):
            layer_counts = [0] * num_interpreters
            for service_key, value in (await self.get_counts(admin_url, layer)).items():
                try:
                    index = int(service_key)
                except ValueError:
                    index = -1
                if 0 <= index < num_interpreters:
                    layer_counts[index] = value
                else:
                    logger.warning(f"Ignoring counter of unknown object {interpreter_service_name(layer)}/{service_key}")
            counters.append(layer_counts)
        return counters
