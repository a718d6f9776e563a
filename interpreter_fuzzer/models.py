"""
Core data models for the Interpreter Fuzzer
"""
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple, Union
from enum import Enum


MAX_LAYERS = 3


class CommandType(Enum):
    """Command kinds understood by the interpreter objects (wire values)"""
    INCREMENT_STATE_COUNTER = 4
    INCREMENT_STATE_COUNTER_INDIRECTLY = 5
    INCREMENT_VIA_DELAYED_CALL = 9
    INCREMENT_STATE_COUNTER_VIA_AWAKEABLE = 18
    CALL_NEXT_LAYER_OBJECT = 19


# Commands that bump exactly one counter on the current layer/key
INCREMENT_COMMAND_TYPES = (
    CommandType.INCREMENT_STATE_COUNTER,
    CommandType.INCREMENT_STATE_COUNTER_INDIRECTLY,
    CommandType.INCREMENT_VIA_DELAYED_CALL,
    CommandType.INCREMENT_STATE_COUNTER_VIA_AWAKEABLE,
)


@dataclass(frozen=True)
class IncrementCommand:
    """Leaf command incrementing the counter of the interpreter running it"""
    kind: CommandType

    def __post_init__(self):
        if self.kind not in INCREMENT_COMMAND_TYPES:
            raise ValueError(f"Not an increment command: {self.kind}")

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value}


@dataclass(frozen=True)
class CallNextLayerObject:
    """Runs a nested program on the object `key` of the next layer"""
    key: int
    program: 'Program'
    kind: CommandType = field(default=CommandType.CALL_NEXT_LAYER_OBJECT, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'key': self.key,
            'program': self.program.to_dict()
        }


Command = Union[IncrementCommand, CallNextLayerObject]


@dataclass(frozen=True)
class Program:
    """Ordered sequence of commands executed by one interpreter object"""
    commands: Tuple[Command, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'commands', tuple(self.commands))

    def __len__(self) -> int:
        return len(self.commands)

    def __iter__(self):
        return iter(self.commands)

    def to_dict(self) -> Dict[str, Any]:
        return {'commands': [command.to_dict() for command in self.commands]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Program':
        commands = []
        for raw in data.get('commands', []):
            try:
                kind = CommandType(raw['kind'])
            except (KeyError, ValueError):
                raise ValueError(f"Unknown command: {raw!r}")
            if kind == CommandType.CALL_NEXT_LAYER_OBJECT:
                commands.append(CallNextLayerObject(
                    key=int(raw['key']),
                    program=cls.from_dict(raw['program'])
                ))
            else:
                commands.append(IncrementCommand(kind))
        return cls(commands=tuple(commands))


class TestStatus(Enum):
    """Lifecycle of a test run"""
    __test__ = False

    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    VALIDATING = "VALIDATING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TestStatus.FINISHED, TestStatus.FAILED)

    def can_transition_to(self, new_status: 'TestStatus') -> bool:
        """Statuses only move forward; FAILED is reachable from any live state"""
        if self.is_terminal:
            return False
        if new_status == TestStatus.FAILED:
            return True
        return _STATUS_ORDER.index(new_status) > _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    TestStatus.NOT_STARTED,
    TestStatus.RUNNING,
    TestStatus.VALIDATING,
    TestStatus.FINISHED,
]


class RollingUpgradeMode(Enum):
    """Order in which a node walks through its image list"""
    NONE = "none"
    FORWARD = "forward"
    BACKWARD = "backward"
    RANDOM = "random"


class ChaosType(Enum):
    """Types of chaos injection supported"""
    RESTART = "restart"
    HARD_RESTART = "hard_restart"
    ROLLING_UPGRADE = "rolling_upgrade"


@dataclass(frozen=True)
class DeploymentRegistration:
    """Deployments to register with the admin API before the run"""
    admin_url: str
    deployments: Tuple[str, ...]


DEFAULT_DEPLOYMENTS = (
    "http://interpreter_zero:9000",
    "http://interpreter_one:9001",
    "http://interpreter_two:9002",
    "http://services:9003",
)


@dataclass(frozen=True)
class TestConfiguration:
    """Immutable configuration of one test run"""
    __test__ = False

    ingress: str
    seed: str
    keys: int
    tests: int
    max_program_size: int
    register: Optional[DeploymentRegistration] = None
    bootstrap: bool = False
    crash_interval: Optional[int] = None  # milliseconds
    crash_hard: bool = False
    rolling_upgrade: Dict[str, RollingUpgradeMode] = field(default_factory=dict)
    batch_size: int = 256
    send_timeout: float = 1.0
    query_timeout: float = 10.0
    retry_attempts: int = 360
    retry_delay: float = 10.0
    poll_interval: float = 10.0
    verify_timeout: Optional[float] = None  # seconds, None waits forever
    server_nodes: Tuple[str, ...] = ("n1", "n2", "n3")
    ingress_port: int = 8080
    admin_port: int = 9070
    bootstrap_settle_time: float = 10.0
    default_deployments: Tuple[str, ...] = DEFAULT_DEPLOYMENTS
    disable_cleanup: bool = False
    log_dir: str = "/tmp/interpreter-fuzzer/logs"


@dataclass(frozen=True)
class MountSpec:
    """Bind mount for a container (always read-write)"""
    source: str
    target: str


@dataclass(frozen=True)
class ContainerSpec:
    """Description of one container of the cluster under test"""
    name: str
    image: str
    ports: Tuple[Union[int, str], ...] = ()
    images: Tuple[str, ...] = ()  # oldest to newest, for rolling upgrades
    env: Dict[str, str] = field(default_factory=dict)
    pull: str = "never"
    cmd: Tuple[str, ...] = ()
    entry_point: Tuple[str, ...] = ()
    mounts: Tuple[MountSpec, ...] = ()
    data_dir: str = "/restate-data"


@dataclass(frozen=True)
class ClusterSpec:
    """All containers making up the cluster"""
    containers: Tuple[ContainerSpec, ...]

    def container_names(self) -> List[str]:
        return [spec.name for spec in self.containers]


@dataclass
class ChaosResult:
    """Result of chaos injection"""
    chaos_id: str
    chaos_type: ChaosType
    target_node: str
    success: bool
    start_time: float
    end_time: Optional[float] = None
    no_op: bool = False
    image: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class Divergence:
    """Difference between the expected and the observed counters"""
    count_diff: int
    total_diff: int
    max_diff: int

    @property
    def converged(self) -> bool:
        return self.count_diff == 0


@dataclass
class VerificationProgress:
    """One verification poll that did not converge yet"""
    divergence: Divergence
    percent_done: float
    elapsed: float
    remaining: Optional[float]  # None when it cannot be estimated
    count_diff_change: int = 0
    total_diff_change: int = 0
    timestamp: float = 0.0


@dataclass
class ExecutionResult:
    """Complete test execution result"""
    run_id: str
    seed: str
    status: TestStatus
    start_time: float
    end_time: float
    programs_sent: int
    expected_total: int
    chaos_events: List[ChaosResult] = field(default_factory=list)
    last_progress: Optional[VerificationProgress] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == TestStatus.FINISHED
