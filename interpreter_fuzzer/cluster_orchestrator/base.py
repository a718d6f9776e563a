"""
Base classes for Cluster Orchestrator components
"""
from abc import ABC
from typing import Dict, Optional
from ..interfaces import ICluster, IContainer
from ..errors import ContainerError


class BaseCluster(ICluster, ABC):
    """Container lookup shared by cluster implementations"""

    def __init__(self):
        self.containers: Optional[Dict[str, IContainer]] = None

    def container(self, name: str) -> IContainer:
        if self.containers is None:
            raise ContainerError("Cluster not started")
        container = self.containers.get(name)
        if container is None:
            raise ContainerError(f"Container {name} not found")
        return container

    def host_container_url(self, name: str, port: int) -> str:
        return self.container(name).url(port)

    def internal_container_url(self, name: str, port: int) -> str:
        # Containers reach each other through their network alias
        self.container(name)
        return f"http://{name}:{port}"
