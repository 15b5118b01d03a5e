"""Configuration loading.

Settings come from four layers, highest priority first:

    1. Environment variables (REMOTE_SSH_HOST, ...)
    2. CMakeCache.txt entries of the build tree
    3. YAML config file (.rdebug.yaml or ~/.config/rdebug/config.yaml)
    4. Built-in defaults
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rdebug.core.protocols import ConfigLoader, EnvironmentProvider, FileSystemService
from rdebug.deploy.exceptions import ConfigurationError
from rdebug.deploy.transport import Credentials
from rdebug.utils.cmake_cache import CMakeCache

DEFAULT_SSH_PORT = 2222
DEFAULT_GDB_PORT = 10000
DEFAULT_WAIT_TIME_MS = 3000
DEFAULT_SSH_USER = "root"
DEFAULT_DEPLOY_PATH = "/tmp"
DEFAULT_REMOTE_TMP = "/tmp"
DEFAULT_GDB = "gdb"

CONFIG_SEARCH_PATHS = [".rdebug.yaml", "~/.config/rdebug/config.yaml"]

# setting name -> (environment variables, CMakeCache entries, YAML key)
SOURCES = {
    "ssh_host": (["REMOTE_SSH_HOST"], ["REMOTE_SSH_HOST"], "ssh_host"),
    "ssh_port": (["REMOTE_SSH_PORT"], ["REMOTE_SSH_PORT"], "ssh_port"),
    "ssh_user": (["REMOTE_SSH_USER"], ["REMOTE_SSH_USER"], "ssh_user"),
    "ssh_password": (["REMOTE_SSH_PASS", "SSHPASS"], ["REMOTE_SSH_PASS"], "ssh_password"),
    "ssh_key": (["REMOTE_SSH_KEY"], ["REMOTE_SSH_KEY"], "ssh_key"),
    "gdb_port": (["REMOTE_GDBSERVER_PORT"], ["REMOTE_GDBSERVER_PORT"], "gdb_port"),
    "local_program_path": (["LOCAL_PROGRAM_PATH"], ["LOCAL_PROGRAM_PATH"], "local_program_path"),
    "local_gdb_path": (["LOCAL_GDB_PATH", "GDB"], ["LOCAL_GDB_PATH", "CMAKE_GDB"], "local_gdb_path"),
    "debug_wait_ms": (["DEBUG_WAIT_TIME"], ["DEBUG_WAIT_TIME"], "debug_wait_ms"),
    "monitor_enabled": (["DAP_MONITOR_ENABLED"], ["DAP_MONITOR_ENABLED"], "monitor_enabled"),
    "deploy_remote_path": (["DEPLOY_REMOTE_PATH"], ["DEPLOY_REMOTE_PATH"], "deploy_remote_path"),
    "remote_tmp_dir": (["REMOTE_TMP_DIR"], ["REMOTE_TMP_DIR"], "remote_tmp_dir"),
    "install_prefix": (["RDEBUG_INSTALL_PREFIX"], [], "install_prefix"),
    "target_sysroot": (["OECORE_TARGET_SYSROOT"], [], "target_sysroot"),
    "log_file": (["RDEBUG_LOG_FILE"], [], "log_file"),
}


@dataclass
class RemoteSettings:
    """Resolved configuration for one rdebug invocation."""
    ssh_host: Optional[str] = None
    ssh_port: int = DEFAULT_SSH_PORT
    ssh_user: str = DEFAULT_SSH_USER
    ssh_password: Optional[str] = field(default=None, repr=False)
    ssh_key: Optional[str] = None
    gdb_port: int = DEFAULT_GDB_PORT
    local_program_path: Optional[str] = None
    local_gdb_path: str = DEFAULT_GDB
    debug_wait_ms: int = DEFAULT_WAIT_TIME_MS
    monitor_enabled: bool = True
    deploy_remote_path: str = DEFAULT_DEPLOY_PATH
    remote_tmp_dir: str = DEFAULT_REMOTE_TMP
    install_prefix: Optional[str] = None
    target_sysroot: Optional[str] = None
    log_file: Optional[str] = None
    build_dir: Optional[str] = None
    default_program_path: Optional[str] = None
    origins: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def credentials(self) -> Credentials:
        return Credentials(
            user=self.ssh_user,
            password=self.ssh_password or None,
            identity_file=os.path.expanduser(self.ssh_key) if self.ssh_key else None,
        )

    @property
    def gdb_server_address(self) -> str:
        return f"{self.ssh_host}:{self.gdb_port}"

    def require_connection(self) -> None:
        """Raise ConfigurationError unless host and credentials are known."""
        missing = []
        if not self.ssh_host:
            missing.append("REMOTE_SSH_HOST")
        if not self.ssh_password and not self.ssh_key:
            missing.append("REMOTE_SSH_PASS (or SSHPASS / REMOTE_SSH_KEY)")
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing) + "\n"
                "Set them in the environment, in CMakeCache.txt (cmake -DREMOTE_SSH_HOST=...) "
                "or in .rdebug.yaml."
            )

    def describe(self) -> List[str]:
        """Human-readable 'name: value (origin)' lines with secrets masked."""
        lines = []
        for name in SOURCES:
            value = getattr(self, name)
            if name == "ssh_password" and value:
                value = "***"
            origin = self.origins.get(name, "default")
            lines.append(f"{name}: {value if value is not None else 'NOT SET'} ({origin})")
        return lines


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("0", "false", "no", "off", "")


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")


def find_config_file(fs: FileSystemService, explicit: Optional[str] = None) -> Optional[str]:
    if explicit:
        if not fs.is_file(explicit):
            raise ConfigurationError(f"Config file not found: {explicit}")
        return explicit
    for candidate in CONFIG_SEARCH_PATHS:
        path = os.path.expanduser(candidate)
        if fs.is_file(path):
            return path
    return None


def load_settings(
    env_provider: EnvironmentProvider,
    filesystem: FileSystemService,
    config_loader: ConfigLoader,
    build_dir: Optional[str] = None,
    config_path: Optional[str] = None,
    search_root: str = ".",
) -> RemoteSettings:
    """Resolve RemoteSettings from environment, CMakeCache and YAML.

    Args:
        env_provider: Environment access
        filesystem: Filesystem access for cache/config discovery
        config_loader: YAML loader
        build_dir: CMake build directory (default: nearest CMakeCache.txt)
        config_path: Explicit YAML config file
        search_root: Where to look for CMakeCache.txt when build_dir is not given

    Returns:
        Fully typed RemoteSettings

    Raises:
        ConfigurationError: malformed values (non-integer ports, bad YAML)
    """
    environ = env_provider.get_environ()
    cache = CMakeCache.load(filesystem, build_dir or search_root)

    yaml_values: Dict[str, Any] = {}
    yaml_path = find_config_file(filesystem, config_path)
    if yaml_path:
        try:
            loaded = config_loader.load_yaml(yaml_path)
        except Exception as e:
            raise ConfigurationError(f"Cannot parse config file {yaml_path}: {e}")
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {yaml_path} must contain a mapping")
        yaml_values = loaded

    settings = RemoteSettings()
    for name, (env_keys, cache_keys, yaml_key) in SOURCES.items():
        value, origin = None, None
        for key in env_keys:
            if environ.get(key):
                value, origin = environ[key], f"env {key}"
                break
        if value is None:
            for key in cache_keys:
                if cache.get(key):
                    value, origin = cache.get(key), f"CMakeCache {key}"
                    break
        if value is None and yaml_values.get(yaml_key) not in (None, ""):
            value, origin = yaml_values[yaml_key], f"{yaml_path}"
        if value is None:
            continue

        if name in ("ssh_port", "gdb_port", "debug_wait_ms"):
            value = _parse_int(name, value)
        elif name == "monitor_enabled":
            value = _parse_bool(value)
        else:
            value = str(value)
        setattr(settings, name, value)
        settings.origins[name] = origin

    if build_dir:
        settings.build_dir = str(Path(build_dir))
    elif cache.build_dir is not None:
        settings.build_dir = str(cache.build_dir)
    elif yaml_values.get("build_dir"):
        settings.build_dir = str(yaml_values["build_dir"])
    settings.default_program_path = cache.default_program_path()

    return settings
