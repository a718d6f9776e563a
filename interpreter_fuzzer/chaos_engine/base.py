"""Base classes for Chaos Engine components"""
import time
import uuid
import random
import logging
from typing import Optional, Sequence
from ..interfaces import ICluster, IContainer
from ..models import ChaosResult, ChaosType

logger = logging.getLogger(__name__)


class ContainerChaosEngine:
    """Applies chaos actions to the containers of a cluster"""

    def __init__(self, cluster: ICluster):
        self.cluster = cluster

    async def inject_restart(self, node: str) -> ChaosResult:
        """Soft restart: the node comes back with its data intact"""
        async def action(container: IContainer) -> bool:
            await container.restart()
            return True
        return await self._inject(node, ChaosType.RESTART, action)

    async def inject_hard_restart(self, node: str) -> ChaosResult:
        """Crash the node and lose its durable storage"""
        async def action(container: IContainer) -> bool:
            await container.restart_and_wipe_data()
            return True
        return await self._inject(node, ChaosType.HARD_RESTART, action)

    async def inject_rolling_upgrade(self, node: str) -> ChaosResult:
        """Replace the node with its next image, a no-op once the list is used up"""
        return await self._inject(node, ChaosType.ROLLING_UPGRADE, lambda container: container.roll_image())

    async def _inject(self, node: str, chaos_type: ChaosType, action) -> ChaosResult:
        chaos_result = ChaosResult(
            chaos_id=str(uuid.uuid4()),
            chaos_type=chaos_type,
            target_node=node,
            success=False,
            start_time=time.time()
        )

        try:
            container = self.cluster.container(node)
            applied = await action(container)
            chaos_result.success = True
            chaos_result.no_op = not applied
            chaos_result.image = container.image
            if applied:
                logger.info(f"Injected {chaos_type.value} chaos on {node}")
            else:
                logger.info(f"No more images to roll on {node}, skipping {chaos_type.value}")
        except Exception as e:
            chaos_result.error_message = f"Exception during chaos injection: {e}"
            logger.error(f"Chaos injection on {node} failed: {e}")

        chaos_result.end_time = time.time()
        return chaos_result


class ChaosTargetSelector:
    """Utility class for selecting chaos targets"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select_target(self, nodes: Sequence[str]) -> Optional[str]:
        """Uniformly random node, None if there is nothing to pick from"""
        if not nodes:
            logger.warning("No nodes available for chaos")
            return None
        selected = nodes[self.rng.randrange(len(nodes))]
        logger.info(f"Selected random node: {selected}")
        return selected
