"""
Base interfaces and abstract classes for all major components
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from .models import (
    Program, TestConfiguration, ChaosResult, VerificationProgress,
    ExecutionResult, RollingUpgradeMode
)


class IContainer(ABC):
    """One node of the cluster under test"""

    name: str
    image: str

    @abstractmethod
    def port(self, port: int) -> int:
        """Host port mapped to a container port"""
        pass

    @abstractmethod
    def ports(self) -> Dict[int, int]:
        """All container port -> host port mappings"""
        pass

    @abstractmethod
    def url(self, port: int) -> str:
        """Host reachable http url of a container port"""
        pass

    @abstractmethod
    def host(self) -> str:
        """Host name the mapped ports are reachable on"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop and remove the container"""
        pass

    @abstractmethod
    async def restart(self) -> None:
        """Restart the current image in place, keeping its data"""
        pass

    @abstractmethod
    async def restart_and_wipe_data(self) -> None:
        """Delete the durable storage of the node, then restart it"""
        pass

    @abstractmethod
    async def roll_image(self) -> bool:
        """Replace the container with the next image. False when no image is left."""
        pass


class ICluster(ABC):
    """Interface for cluster lifecycle management"""

    @abstractmethod
    async def start(self, rolling_upgrade: Dict[str, RollingUpgradeMode]) -> None:
        """Start every container of the cluster"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop all containers and release the network"""
        pass

    @abstractmethod
    def container(self, name: str) -> IContainer:
        """Look up a started container"""
        pass

    @abstractmethod
    def host_container_url(self, name: str, port: int) -> str:
        """Url of a container port as seen from the host"""
        pass

    @abstractmethod
    def internal_container_url(self, name: str, port: int) -> str:
        """Url of a container port as seen from inside the cluster network"""
        pass


class IProgramGenerator(ABC):
    """Interface for program generation"""

    @abstractmethod
    def generate_program(self, layer: int) -> Program:
        """Generate a random program for the given layer"""
        pass


class ILogger(ABC):
    """Interface for test logging and reporting"""

    @abstractmethod
    def log_test_start(self, run_id: str, config: TestConfiguration) -> None:
        """Log test run start"""
        pass

    @abstractmethod
    def log_batch_sent(self, batch_size: int, total_sent: int) -> None:
        """Log a fully acknowledged batch"""
        pass

    @abstractmethod
    def log_chaos_event(self, chaos_result: ChaosResult) -> None:
        """Log chaos injection event"""
        pass

    @abstractmethod
    def log_verification_progress(self, progress: VerificationProgress) -> None:
        """Log a verification poll"""
        pass

    @abstractmethod
    def log_test_completion(self, test_result: ExecutionResult) -> None:
        """Log test completion"""
        pass

    @abstractmethod
    def generate_report(self, test_result: ExecutionResult,
                        error_summary: Optional[Dict[str, Any]] = None) -> str:
        """Generate summary report"""
        pass
