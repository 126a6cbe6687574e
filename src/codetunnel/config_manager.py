"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores user defaults for sessions: bind address, ssh flags, sync behavior,
the remote server location, and local VS Code directories.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Input sanitization
"""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for newer Python versions
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

from codetunnel.errors import ConfigError
from codetunnel.tunnel import DEFAULT_SERVER_DOWNLOAD_URL, DEFAULT_SERVER_PATH

logger = logging.getLogger(__name__)

TRUE_VALUES = {"true", "yes", "1", "on"}
FALSE_VALUES = {"false", "no", "0", "off"}


@dataclass
class CodeTunnelConfig:
    """codetunnel configuration data."""

    bind_address: str = ""
    ssh_flags: str = ""
    skip_sync: bool = False
    sync_back: bool = False
    no_open: bool = False
    server_path: str = DEFAULT_SERVER_PATH
    server_download_url: str = DEFAULT_SERVER_DOWNLOAD_URL
    vscode_config_dir: str | None = None
    vscode_extensions_dir: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # Filter out None values as TOML doesn't support them
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CodeTunnelConfig":
        """Create from dictionary, ignoring unknown keys.

        Raises:
            ConfigError: If a known key holds a value of the wrong type
        """
        defaults = cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.debug(f"Ignoring unknown config keys: {', '.join(unknown)}")

        values = {k: v for k, v in data.items() if k in known}
        for key, value in values.items():
            default = getattr(defaults, key)
            # Optional fields hold paths; TOML has no null
            expected = str if default is None else type(default)
            if type(value) is not expected:
                raise ConfigError(
                    f"Invalid value for {key}: expected {expected.__name__}, got {value!r}"
                )
        return cls(**values)


class ConfigManager:
    """Manage codetunnel configuration file.

    Configuration is stored at ~/.codetunnel/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".codetunnel"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Ensures the path is within allowed directories to prevent path traversal attacks.

        Args:
            path: Path to validate (must be resolved)

        Returns:
            Validated path

        Raises:
            ConfigError: If path is outside allowed directories
        """
        resolved_path = path.resolve()

        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]

        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}\n"
            "This restriction prevents path traversal attacks."
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If path is invalid or outside allowed directories
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            path = cls._validate_config_path(path)
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)

            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR

        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> CodeTunnelConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            CodeTunnelConfig object (defaults if the file does not exist)

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return CodeTunnelConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]

            logger.debug(f"Loaded config from: {config_path}")
            return CodeTunnelConfig.from_dict(data)

        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: CodeTunnelConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Existing comments and formatting are preserved; the file is replaced
        atomically.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path the config was written to

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser().resolve())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            data = config.to_dict()
            for key, value in data.items():
                doc[key] = value
            # Keys reset to None are removed from the file
            known_keys = {f.name for f in fields(CodeTunnelConfig)}
            for key in [k for k in doc if k in known_keys and k not in data]:
                del doc[key]

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except ConfigError:
            raise
        except Exception as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

    @classmethod
    def set_value(cls, key: str, raw_value: str, custom_path: str | None = None) -> CodeTunnelConfig:
        """Validate and persist a single configuration value.

        Args:
            key: Config field name
            raw_value: Value as typed on the command line ("" clears optional fields)
            custom_path: Custom config file path (optional)

        Returns:
            Updated CodeTunnelConfig

        Raises:
            ConfigError: If the key is unknown or the value invalid
        """
        known_keys = {f.name for f in fields(CodeTunnelConfig)}
        if key not in known_keys:
            raise ConfigError(
                f"Unknown config key: {key}\nValid keys: {', '.join(sorted(known_keys))}"
            )

        value: Any
        default = getattr(CodeTunnelConfig(), key)
        if isinstance(default, bool):
            lowered = raw_value.strip().lower()
            if lowered in TRUE_VALUES:
                value = True
            elif lowered in FALSE_VALUES:
                value = False
            else:
                raise ConfigError(f"Invalid boolean for {key}: {raw_value!r}")
        elif default is None:
            value = raw_value or None
        else:
            value = raw_value

        config_path = Path(custom_path).expanduser() if custom_path else cls.DEFAULT_CONFIG_FILE
        if config_path.exists():
            config = cls.load_config(custom_path)
        else:
            # save_config creates the file
            config = CodeTunnelConfig()

        setattr(config, key, value)
        cls.save_config(config, custom_path)
        return config


__all__ = ["CodeTunnelConfig", "ConfigManager"]
