"""
User Configuration Management

Manages user-editable settings stored in a JSON file.
Only the CLI reads this; the transport layer takes explicit arguments.
"""
import json
import logging
from pathlib import Path
from typing import Any, List, Optional
from dataclasses import dataclass, asdict, fields

from beamlink import config as defaults

logger = logging.getLogger(__name__)

FALLBACK_CHOICES = ("notify", "fail")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class BeamConfig:
    """User configuration for beamlink"""

    # Where received files land (empty = platform default / BEAMLINK_RECEIVE_DIR)
    receive_dir: str = ""

    # Wi-Fi
    wifi_port: int = defaults.WIFI_PORT
    connect_timeout: float = defaults.CONNECT_TIMEOUT
    topology_timeout: float = defaults.TOPOLOGY_TIMEOUT

    # Transfer
    chunk_size: int = defaults.CHUNK_SIZE

    # Bluetooth
    rfcomm_channel: int = defaults.RFCOMM_CHANNEL
    bluetooth_fallback: str = "notify"  # "notify" = switch to Wi-Fi, "fail" = error out

    log_level: str = defaults.LOG_LEVEL

    @property
    def receive_path(self) -> Path:
        if self.receive_dir:
            return Path(self.receive_dir).expanduser()
        return defaults.get_receive_dir()

    def validate(self) -> List[str]:
        """Return a list of problems, empty when the config is usable"""
        errors = []

        if not isinstance(self.wifi_port, int) or not 0 < self.wifi_port < 65536:
            errors.append(f"wifi_port must be between 1 and 65535 (got {self.wifi_port})")
        if not isinstance(self.connect_timeout, (int, float)) or self.connect_timeout <= 0:
            errors.append(f"connect_timeout must be positive (got {self.connect_timeout})")
        if not isinstance(self.topology_timeout, (int, float)) or self.topology_timeout <= 0:
            errors.append(f"topology_timeout must be positive (got {self.topology_timeout})")
        if not isinstance(self.chunk_size, int) or self.chunk_size <= 0:
            errors.append(f"chunk_size must be a positive integer (got {self.chunk_size})")
        if not isinstance(self.rfcomm_channel, int) or not 1 <= self.rfcomm_channel <= 30:
            errors.append(f"rfcomm_channel must be between 1 and 30 (got {self.rfcomm_channel})")
        if self.bluetooth_fallback not in FALLBACK_CHOICES:
            errors.append(f"bluetooth_fallback must be one of {', '.join(FALLBACK_CHOICES)} "
                          f"(got {self.bluetooth_fallback!r})")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)} (got {self.log_level!r})")
        if not isinstance(self.receive_dir, str):
            errors.append("receive_dir must be a string")

        return errors

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'BeamConfig':
        """Create config from dict, using defaults for missing keys"""
        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
        return config


def _repair(config: BeamConfig) -> BeamConfig:
    """Reset every field that fails validation to its default"""
    fresh = BeamConfig()
    for f in fields(BeamConfig):
        single = BeamConfig(**{f.name: getattr(config, f.name)})
        if any(e.startswith(f.name) for e in single.validate()):
            logger.warning(f"Invalid value for {f.name}: {getattr(config, f.name)!r}, using default")
            setattr(config, f.name, getattr(fresh, f.name))
    return config


class ConfigManager:
    """Manages loading, saving, and accessing user configuration"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[BeamConfig] = None
    _path: Optional[Path] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load()

    @property
    def path(self) -> Path:
        return self._path or defaults.get_config_file()

    def load(self, config_path: Path = None) -> BeamConfig:
        """Load configuration from file"""
        if config_path is not None:
            self._path = Path(config_path)
        path = self.path

        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top-level value is not an object")
                self._config = _repair(BeamConfig.from_dict(data))
                logger.info(f"Loaded config from {path}")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
                self._config = BeamConfig()
        else:
            logger.info("No config file found, using defaults")
            self._config = BeamConfig()
            self.save()

        return self._config

    def save(self, config_path: Path = None) -> bool:
        """Save configuration to file"""
        if config_path is not None:
            self._path = Path(config_path)
        path = self.path

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                json.dump(self._config.to_dict(), f, indent=2)
            logger.info(f"Saved config to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self) -> BeamConfig:
        """Get current configuration"""
        if self._config is None:
            self.load()
        return self._config

    def set(self, key: str, value: Any) -> bool:
        """Set a configuration value, rejecting unknown keys and invalid values"""
        if not hasattr(self._config, key):
            logger.error(f"Unknown config key: {key}")
            return False

        previous = getattr(self._config, key)
        setattr(self._config, key, value)
        problems = [e for e in self._config.validate() if e.startswith(key)]
        if problems:
            setattr(self._config, key, previous)
            for problem in problems:
                logger.error(problem)
            return False
        return self.save()

    def reset(self) -> BeamConfig:
        """Reset to default configuration"""
        self._config = BeamConfig()
        self.save()
        return self._config


def parse_value(key: str, raw: str) -> Any:
    """Convert a command-line string to the type of the given config field"""
    current = getattr(BeamConfig(), key, None)
    if isinstance(current, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def get_config() -> BeamConfig:
    """Get the current user configuration"""
    return ConfigManager().get()


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance"""
    return ConfigManager()


def print_config():
    """Print current configuration in a readable format"""
    manager = get_config_manager()
    config = manager.get()

    print("\n" + "=" * 50)
    print("  beamlink - Configuration")
    print("=" * 50)

    print("\n  Transfer:")
    print(f"    Receive Dir:      {config.receive_path}")
    print(f"    Chunk Size:       {config.chunk_size} bytes")

    print("\n  Wi-Fi:")
    print(f"    Port:             {config.wifi_port}")
    print(f"    Connect Timeout:  {config.connect_timeout}s")
    print(f"    Topology Timeout: {config.topology_timeout}s")

    print("\n  Bluetooth:")
    print(f"    RFCOMM Channel:   {config.rfcomm_channel}")
    print(f"    No Device:        {config.bluetooth_fallback}")

    print(f"\n  Log Level: {config.log_level}")
    print(f"  Config File: {manager.path}")
    print("=" * 50 + "\n")
