"""
Shared fakes for the cluster, the containers and the wire client
"""
import asyncio
from typing import Dict, List, Optional

import pytest

from interpreter_fuzzer.interfaces import IContainer
from interpreter_fuzzer.cluster_orchestrator.base import BaseCluster
from interpreter_fuzzer.errors import ContainerError, DispatchError
from interpreter_fuzzer.fuzzer_engine.state_tracker import StateTracker
from interpreter_fuzzer.models import TestConfiguration, RollingUpgradeMode


class RecordingSleep:
    """Stand-in for asyncio.sleep that records durations and only yields"""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeContainer(IContainer):
    def __init__(self, name: str, image: str = "restate:latest", images: Optional[List[str]] = None):
        self.name = name
        self.image = image
        self.images = list(images or [])
        self.restarts = 0
        self.wipes = 0
        self.rolls = 0
        self.stopped = False
        self.fail = False

    def port(self, port: int) -> int:
        # A restart publishes the port somewhere else
        return port + 1000 * (self.restarts + self.wipes + self.rolls)

    def ports(self) -> Dict[int, int]:
        return {8080: self.port(8080), 9070: self.port(9070)}

    def url(self, port: int) -> str:
        return f"http://{self.host()}:{self.port(port)}"

    def host(self) -> str:
        return "localhost"

    async def stop(self) -> None:
        self.stopped = True

    async def restart(self) -> None:
        if self.fail:
            raise ContainerError(f"{self.name} refused to restart")
        self.restarts += 1

    async def restart_and_wipe_data(self) -> None:
        if self.fail:
            raise ContainerError(f"{self.name} refused to restart")
        self.wipes += 1

    async def roll_image(self) -> bool:
        if not self.images:
            return False
        self.image = self.images.pop(0)
        self.rolls += 1
        return True


class FakeCluster(BaseCluster):
    def __init__(self, names=("n1", "n2", "n3")):
        super().__init__()
        self.names = list(names)
        self.started_with = None
        self.stop_calls = 0
        self.fail_stop = False
        self.all_containers: Dict[str, FakeContainer] = {}

    async def start(self, rolling_upgrade: Dict[str, RollingUpgradeMode]) -> None:
        self.started_with = dict(rolling_upgrade)
        self.all_containers = {name: FakeContainer(name) for name in self.names}
        self.containers = dict(self.all_containers)

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.fail_stop:
            raise ContainerError("network still in use")
        self.containers = None


class FakeRestateClient:
    """
    Behaves like a cluster that applies each idempotency key once and
    executes the received programs right away.
    """

    def __init__(self, num_interpreters: int):
        self.num_interpreters = num_interpreters
        self.applied = StateTracker(num_interpreters)
        self.seen_keys = set()
        self.sends: List[tuple] = []
        self.registered: List[tuple] = []
        self.failures_left = 0
        self.always_fail = False
        self.count_queries = 0

    async def send_interpreter(self, ingress_url, interpreter_id, idempotency_key, program):
        self.sends.append((ingress_url, interpreter_id, idempotency_key))
        if self.always_fail:
            raise DispatchError("Failed to send: 503", status_code=503)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise DispatchError("Failed to send: 500", status_code=500)
        if idempotency_key not in self.seen_keys:
            self.seen_keys.add(idempotency_key)
            self.applied.update(0, interpreter_id, program)

    async def ingress_healthy(self, ingress_url):
        return True

    async def admin_healthy(self, admin_url):
        return True

    async def register_deployment(self, admin_url, uri):
        self.registered.append((admin_url, uri))

    async def get_all_counts(self, admin_url, num_interpreters, num_layers=3):
        self.count_queries += 1
        return self.applied.get_states()

    async def aclose(self):
        pass


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def base_config():
    return TestConfiguration(
        ingress="http://localhost:8080",
        seed="fuzz-seed",
        keys=10,
        tests=50,
        max_program_size=5,
        batch_size=16,
        retry_attempts=3,
        retry_delay=0.0,
        poll_interval=0.0
    )
