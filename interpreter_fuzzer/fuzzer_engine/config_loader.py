"""
Config Loader - Parses and validates test and cluster configuration files
"""
import os
import re
import json
import dataclasses
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
from ..models import (
    TestConfiguration, DeploymentRegistration, RollingUpgradeMode,
    ClusterSpec, ContainerSpec, MountSpec
)
from ..errors import ConfigurationError

CLUSTER_SPEC_ENV = "UNIVERSE_ENV_JSON"
DISABLE_CLEANUP_ENV = "DISABLE_CLEANUP"

REQUIRED_FIELDS = ('ingress', 'seed', 'keys', 'tests', 'max_program_size')

_TUPLE_FIELDS = ('server_nodes', 'default_deployments')


def snake_case(name: str) -> str:
    """maxProgramSize -> max_program_size, snake_case names are returned as is"""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def _normalize_keys(data: Mapping[str, Any], what: str) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{what} must be a mapping, got {type(data).__name__}")
    return {snake_case(str(key)): value for key, value in data.items()}


class ConfigLoader:
    """Utility class for loading and validating run configurations"""

    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> TestConfiguration:
        """Load a test configuration from a YAML or JSON file."""
        return ConfigLoader.from_dict(ConfigLoader._read_file(file_path))

    @staticmethod
    def load_from_string(config_text: str) -> TestConfiguration:
        """Load a test configuration from a YAML (or JSON) string."""
        try:
            data = yaml.safe_load(config_text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}")
        return ConfigLoader.from_dict(data)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> TestConfiguration:
        """Build a validated TestConfiguration, accepting camelCase or snake_case keys"""
        values = _normalize_keys(data or {}, "Test configuration")

        known = {f.name for f in dataclasses.fields(TestConfiguration)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration field(s): {', '.join(unknown)}")

        missing = [name for name in REQUIRED_FIELDS if values.get(name) is None]
        if missing:
            raise ConfigurationError(f"Missing required configuration field(s): {', '.join(missing)}")

        values['seed'] = str(values['seed'])
        if values.get('register') is not None:
            values['register'] = ConfigLoader._parse_registration(values['register'])
        if values.get('rolling_upgrade') is not None:
            values['rolling_upgrade'] = ConfigLoader._parse_rolling_upgrade(values['rolling_upgrade'])
        else:
            values.pop('rolling_upgrade', None)
        for name in _TUPLE_FIELDS:
            if name in values:
                values[name] = tuple(values[name])

        config = TestConfiguration(**values)
        ConfigLoader.validate(config)
        return config

    @staticmethod
    def validate(config: TestConfiguration) -> bool:
        """Raise ConfigurationError naming the first invalid field"""
        def check_int(name: str, minimum: int):
            value = getattr(config, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
                raise ConfigurationError(f"{name} must be an integer >= {minimum}, got {value!r}")

        def check_positive(name: str, allow_none: bool = False):
            value = getattr(config, name)
            if value is None and allow_none:
                return
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")

        def check_bool(name: str):
            value = getattr(config, name)
            if not isinstance(value, bool):
                raise ConfigurationError(f"{name} must be true or false, got {value!r}")

        if not isinstance(config.ingress, str) or not config.ingress:
            raise ConfigurationError(f"ingress must be a non-empty url, got {config.ingress!r}")
        check_int('keys', 1)
        check_int('tests', 0)
        check_int('max_program_size', 1)
        check_int('batch_size', 1)
        check_int('retry_attempts', 1)
        check_positive('crash_interval', allow_none=True)
        check_positive('send_timeout')
        check_positive('query_timeout')
        check_positive('poll_interval')
        check_positive('verify_timeout', allow_none=True)
        check_bool('bootstrap')
        check_bool('crash_hard')
        check_bool('disable_cleanup')
        if config.retry_delay < 0:
            raise ConfigurationError(f"retry_delay must be >= 0, got {config.retry_delay!r}")
        if not config.server_nodes:
            raise ConfigurationError("server_nodes must name at least one node")
        return True

    @staticmethod
    def apply_overrides(config: TestConfiguration, **overrides) -> TestConfiguration:
        """Copy of the configuration with the given (non None) fields replaced"""
        changes = {name: value for name, value in overrides.items() if value is not None}
        if 'seed' in changes:
            changes['seed'] = str(changes['seed'])
        if not changes:
            return config
        updated = dataclasses.replace(config, **changes)
        ConfigLoader.validate(updated)
        return updated

    @staticmethod
    def apply_environment(config: TestConfiguration, env: Optional[Mapping[str, str]] = None) -> TestConfiguration:
        """Honour DISABLE_CLEANUP from the environment"""
        env = os.environ if env is None else env
        if env.get(DISABLE_CLEANUP_ENV):
            return dataclasses.replace(config, disable_cleanup=True)
        return config

    @staticmethod
    def _parse_registration(data: Any) -> DeploymentRegistration:
        values = _normalize_keys(data, "register")
        admin_url = values.get('admin_url')
        deployments = values.get('deployments')
        if not isinstance(admin_url, str) or not admin_url:
            raise ConfigurationError("register.adminUrl is required")
        if not isinstance(deployments, list) or not all(isinstance(d, str) for d in deployments):
            raise ConfigurationError("register.deployments must be a list of urls")
        return DeploymentRegistration(admin_url=admin_url, deployments=tuple(deployments))

    @staticmethod
    def _parse_rolling_upgrade(data: Any) -> Dict[str, RollingUpgradeMode]:
        if not isinstance(data, Mapping):
            raise ConfigurationError("rollingUpgrade must map node names to a mode")
        modes = {}
        for node, mode in data.items():
            try:
                modes[str(node)] = RollingUpgradeMode(str(mode).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown rolling upgrade mode {mode!r} for {node}, "
                    f"expected one of: {', '.join(m.value for m in RollingUpgradeMode)}"
                )
        return modes

    @staticmethod
    def load_cluster_spec_file(file_path: Union[str, Path]) -> ClusterSpec:
        return ConfigLoader.cluster_spec_from_dict(ConfigLoader._read_file(file_path))

    @staticmethod
    def load_cluster_spec_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[ClusterSpec]:
        """Cluster spec from UNIVERSE_ENV_JSON, None if the variable is not set"""
        env = os.environ if env is None else env
        raw = env.get(CLUSTER_SPEC_ENV)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{CLUSTER_SPEC_ENV} is not valid JSON: {e}")
        return ConfigLoader.cluster_spec_from_dict(data)

    @staticmethod
    def cluster_spec_from_dict(data: Any) -> ClusterSpec:
        """Parse {container name: container spec} into a ClusterSpec"""
        if not isinstance(data, Mapping) or not data:
            raise ConfigurationError("Cluster spec must map container names to container specs")
        return ClusterSpec(containers=tuple(
            ConfigLoader._parse_container(str(name), spec) for name, spec in data.items()
        ))

    @staticmethod
    def _parse_container(name: str, data: Any) -> ContainerSpec:
        values = _normalize_keys(data, f"Container {name}")
        image = values.get('image')
        if not isinstance(image, str) or not image:
            raise ConfigurationError(f"Container {name} has no image")

        pull = values.get('pull', 'never')
        if pull not in ('always', 'never'):
            raise ConfigurationError(f"Container {name}: pull must be 'always' or 'never', got {pull!r}")

        ports = values.get('ports', [])
        for port in ports:
            if isinstance(port, bool) or not isinstance(port, (int, str)):
                raise ConfigurationError(f"Container {name}: invalid port {port!r}")

        mounts = []
        for mount in values.get('mount', values.get('mounts', [])) or []:
            mount_values = _normalize_keys(mount, f"Container {name} mount")
            if 'source' not in mount_values or 'target' not in mount_values:
                raise ConfigurationError(f"Container {name}: mounts need a source and a target")
            mounts.append(MountSpec(source=str(mount_values['source']), target=str(mount_values['target'])))

        return ContainerSpec(
            name=name,
            image=image,
            ports=tuple(ports),
            images=tuple(values.get('images') or ()),
            env={str(k): str(v) for k, v in (values.get('env') or {}).items()},
            pull=pull,
            cmd=tuple(values.get('cmd') or ()),
            entry_point=tuple(values.get('entry_point') or ()),
            mounts=tuple(mounts),
            data_dir=values.get('data_dir', '/restate-data')
        )

    @staticmethod
    def _read_file(file_path: Union[str, Path]) -> Any:
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        with open(file_path, 'r') as f:
            config_text = f.read()

        try:
            if file_path.suffix == '.json':
                return json.loads(config_text)
            return yaml.safe_load(config_text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Invalid syntax in {file_path}: {e}")
