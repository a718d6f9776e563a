import asyncio
import time
import uuid
import random
import logging
from typing import List, Dict, Optional, Tuple, Union
from ..models import ClusterSpec, ContainerSpec, RollingUpgradeMode
from ..interfaces import IContainer
from ..errors import ConfigurationError, ContainerError
from .base import BaseCluster

logger = logging.getLogger(__name__)

WIPED_DATA_BACKUP_DIR = "/ohoh"


class DockerCommandRunner:
    """Runs docker CLI commands without blocking the event loop"""

    def __init__(self, docker_binary: str = "docker"):
        self.docker_binary = docker_binary

    async def run(self, *args: str) -> str:
        process = await asyncio.create_subprocess_exec(
            self.docker_binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise ContainerError(
                f"docker {' '.join(args)} failed with exit code {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode(errors='replace')


class UpgradeCursor:
    """
    Remaining images of one node for rolling upgrades.

    forward consumes the list oldest to newest, backward newest to oldest,
    random picks any image without consuming it and never runs out, none
    never rolls.
    """

    def __init__(self, mode: RollingUpgradeMode, images: List[str], rng: Optional[random.Random] = None):
        self.mode = mode
        self.remaining = list(images)
        self.rng = rng or random.Random()

    def next_image(self) -> Optional[str]:
        """The image to roll to, None when there is nothing left"""
        if not self.remaining:
            return None
        if self.mode == RollingUpgradeMode.FORWARD:
            return self.remaining.pop(0)
        if self.mode == RollingUpgradeMode.BACKWARD:
            return self.remaining.pop()
        if self.mode == RollingUpgradeMode.RANDOM:
            return self.remaining[self.rng.randrange(len(self.remaining))]
        return None


def upgrade_policy(rolling_upgrade: Dict[str, RollingUpgradeMode], spec: ContainerSpec,
                   rng: Optional[random.Random] = None) -> Tuple[RollingUpgradeMode, str, List[str]]:
    """Upgrade mode, initial image and image list of a container"""
    mode = rolling_upgrade.get(spec.name)
    if mode is None:
        return RollingUpgradeMode.NONE, spec.image, []
    if not spec.images:
        raise ConfigurationError(
            f"Container {spec.name} has no images for rolling upgrade, "
            f"but a rolling upgrade test was requested for it"
        )

    images = list(spec.images)
    if mode == RollingUpgradeMode.FORWARD:
        return mode, images[0], images
    if mode == RollingUpgradeMode.BACKWARD:
        return mode, images[-1], images
    if mode == RollingUpgradeMode.RANDOM:
        rng = rng or random.Random()
        return mode, images[rng.randrange(len(images))], images
    raise ConfigurationError(f"Unknown rolling upgrade mode: {mode}")


def parse_port(port: Union[int, str]) -> Tuple[int, Optional[int]]:
    """(container port, fixed host port or None) of a port spec such as 8080 or '18080:8080'"""
    if isinstance(port, int):
        return port, None
    host_port, _, container_port = str(port).partition(":")
    if not container_port:
        return int(host_port), None
    return int(container_port), int(host_port)


class DockerContainer(IContainer):
    """One docker container of the cluster, restartable and rollable"""

    def __init__(self, spec: ContainerSpec, image: str, cursor: UpgradeCursor,
                 runner: DockerCommandRunner, network: str, host: str = "localhost"):
        self.spec = spec
        self.name = spec.name
        self.image = image
        self.cursor = cursor
        self.runner = runner
        self.network = network
        self._host = host
        self._ports: Dict[int, int] = {}
        self.started = False

    def _run_args(self, image: str) -> List[str]:
        args = [
            "run", "-d",
            "--name", self.name,
            "--network", self.network,
            "--network-alias", self.name,
            "--pull", "always" if self.spec.pull == "always" else "never",
        ]
        for port in self.spec.ports:
            container_port, host_port = parse_port(port)
            args += ["-p", f"{host_port}:{container_port}" if host_port else str(container_port)]
        for key, value in self.spec.env.items():
            args += ["-e", f"{key}={value}"]
        for mount in self.spec.mounts:
            args += ["-v", f"{mount.source}:{mount.target}:rw"]
        # docker only takes the executable as --entrypoint, its arguments go before cmd
        entry_point = list(self.spec.entry_point)
        if entry_point:
            args += ["--entrypoint", entry_point[0]]
        args.append(image)
        args += entry_point[1:]
        args += list(self.spec.cmd)
        return args

    async def start(self, image: Optional[str] = None) -> None:
        if image is not None:
            self.image = image
        logger.info(f"Starting {self.name} from {self.image}")
        await self.runner.run(*self._run_args(self.image))
        self.started = True
        await self._refresh_ports()

    async def _refresh_ports(self) -> None:
        """Host ports can change after every restart, ask docker again"""
        ports = {}
        for port in self.spec.ports:
            container_port, host_port = parse_port(port)
            if host_port is None:
                output = await self.runner.run("port", self.name, f"{container_port}/tcp")
                host_port = self._parse_port_output(output, container_port)
            ports[container_port] = host_port
        self._ports = ports

    def _parse_port_output(self, output: str, container_port: int) -> int:
        for line in output.splitlines():
            line = line.strip()
            if line:
                return int(line.rsplit(":", 1)[1])
        raise ContainerError(f"Port {container_port} of {self.name} is not published")

    def _ensure_started(self) -> None:
        if not self.started:
            raise ContainerError(f"Container {self.name} not started")

    def port(self, port: int) -> int:
        self._ensure_started()
        if port not in self._ports:
            raise ContainerError(f"Port {port} of {self.name} is not exposed")
        return self._ports[port]

    def ports(self) -> Dict[int, int]:
        self._ensure_started()
        return dict(self._ports)

    def url(self, port: int) -> str:
        return f"http://{self.host()}:{self.port(port)}"

    def host(self) -> str:
        self._ensure_started()
        return self._host

    async def stop(self) -> None:
        if not self.started:
            return
        await self.runner.run("rm", "-f", self.name)
        self.started = False
        self._ports = {}

    async def restart(self) -> None:
        self._ensure_started()
        await self.runner.run("restart", "-t", "1", self.name)
        await self._refresh_ports()

    async def restart_and_wipe_data(self) -> None:
        self._ensure_started()
        backup = f"{WIPED_DATA_BACKUP_DIR}/{int(time.time() * 1000)}"
        data_dir = self.spec.data_dir.rstrip("/")

        logger.info(f"Wiping {data_dir} of {self.name}, keeping a copy in {backup}")
        await self.runner.run("exec", self.name, "sh", "-c", f"mkdir -p {backup}")
        await self.runner.run("exec", self.name, "sh", "-c", f"cp -r {data_dir}/*/db {backup}/db")
        await self.runner.run("exec", self.name, "sh", "-c", f"rm -rf {data_dir}/*/db")
        await self.restart()

    async def roll_image(self) -> bool:
        self._ensure_started()
        next_image = self.cursor.next_image()
        if next_image is None:
            return False
        logger.info(f"Rolling upgrade {self.name} to {next_image} (mode: {self.cursor.mode.value})")
        await self.stop()
        await self.start(next_image)
        return True


class DockerCluster(BaseCluster):
    """Cluster of docker containers sharing a private network"""

    def __init__(self, spec: ClusterSpec, runner: Optional[DockerCommandRunner] = None,
                 rng: Optional[random.Random] = None, disable_cleanup: bool = False,
                 host: str = "localhost"):
        super().__init__()
        self.spec = spec
        self.runner = runner or DockerCommandRunner()
        self.rng = rng or random.Random()
        self.disable_cleanup = disable_cleanup
        self.host = host
        self.network: Optional[str] = None

    async def start(self, rolling_upgrade: Dict[str, RollingUpgradeMode]) -> None:
        # Validate every upgrade policy before anything is created
        policies = {spec.name: upgrade_policy(rolling_upgrade, spec, self.rng) for spec in self.spec.containers}

        network = f"interpreter-fuzzer-{str(uuid.uuid4())[:8]}"
        logger.info(f"Creating network {network}")
        await self.runner.run("network", "create", network)
        self.network = network

        containers = []
        for spec in self.spec.containers:
            mode, image, images = policies[spec.name]
            containers.append(DockerContainer(
                spec=spec,
                image=image,
                cursor=UpgradeCursor(mode, images, self.rng),
                runner=self.runner,
                network=network,
                host=self.host
            ))

        # Registered first so a partial start is still cleaned up by stop()
        self.containers = {container.name: container for container in containers}
        await asyncio.gather(*(container.start() for container in containers))
        logger.info(f"Started {len(containers)} containers: {', '.join(self.spec.container_names())}")

    async def stop(self) -> None:
        containers = self.containers
        self.containers = None
        network = self.network
        self.network = None

        if self.disable_cleanup:
            logger.info("Skipping stop of containers")
            return

        if containers:
            logger.info(f"Stopping containers {', '.join(containers)}")
            results = await asyncio.gather(
                *(container.stop() for container in containers.values()),
                return_exceptions=True
            )
            errors = [result for result in results if isinstance(result, Exception)]
            if errors:
                raise ContainerError(f"Failed to stop {len(errors)} container(s): {errors[0]}")

        if network:
            await self.runner.run("network", "rm", network)
