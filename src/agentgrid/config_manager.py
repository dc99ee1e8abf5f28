"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores the default team session, team size, agent launch command, the
location of the per-role instruction files and optional timing overrides.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Input validation
"""

import logging
import os
import tempfile
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import tomlkit

from agentgrid.roles import Role, RoleKind, team_roles
from agentgrid.session_discovery import DEFAULT_SESSION_NAME
from agentgrid.timing import TimingPolicy, TimingPolicyError

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 4
DEFAULT_LAUNCH_COMMAND = "claude --dangerously-skip-permissions"

_STRING_KEYS = (
    "default_session",
    "launch_command",
    "anchor1_instructions",
    "anchor2_instructions",
    "worker_instructions",
)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class AgentGridConfig:
    """agentgrid configuration data."""

    default_session: str = DEFAULT_SESSION_NAME
    worker_count: int = DEFAULT_WORKER_COUNT
    launch_command: str = DEFAULT_LAUNCH_COMMAND
    instructions_dir: str | None = None
    anchor1_instructions: str = "po.md"
    anchor2_instructions: str = "manager.md"
    worker_instructions: str = "developer.md"
    timing: dict[str, float] | None = None  # TimingPolicy field -> seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentGridConfig":
        """Create from dictionary.

        Raises:
            ConfigError: If a value has the wrong type or range
        """
        defaults = cls()
        for key in _STRING_KEYS:
            value = data.get(key, getattr(defaults, key))
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{key} must be a non-empty string, got {value!r}")

        worker_count = data.get("worker_count", DEFAULT_WORKER_COUNT)
        if isinstance(worker_count, bool) or not isinstance(worker_count, int) or worker_count <= 0:
            raise ConfigError(f"worker_count must be a positive integer, got {worker_count!r}")

        instructions_dir = data.get("instructions_dir")
        if instructions_dir is not None and not isinstance(instructions_dir, str):
            raise ConfigError(f"instructions_dir must be a string, got {instructions_dir!r}")

        timing = data.get("timing")
        if timing is not None:
            if not isinstance(timing, dict):
                raise ConfigError("timing must be a table")
            try:
                TimingPolicy.from_dict(timing)
            except TimingPolicyError as e:
                raise ConfigError(f"Invalid timing: {e}") from e
            timing = dict(timing)

        return cls(
            default_session=data.get("default_session", defaults.default_session),
            worker_count=worker_count,
            launch_command=data.get("launch_command", defaults.launch_command),
            instructions_dir=instructions_dir,
            anchor1_instructions=data.get("anchor1_instructions", defaults.anchor1_instructions),
            anchor2_instructions=data.get("anchor2_instructions", defaults.anchor2_instructions),
            worker_instructions=data.get("worker_instructions", defaults.worker_instructions),
            timing=timing,
        )

    def instructions_file_for(self, role: Role) -> str:
        if role.kind == RoleKind.ANCHOR1:
            return self.anchor1_instructions
        if role.kind == RoleKind.ANCHOR2:
            return self.anchor2_instructions
        return self.worker_instructions


class ConfigManager:
    """Manage agentgrid configuration file.

    Configuration is stored at ~/.agentgrid/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".agentgrid"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path.

        Args:
            path: Path to validate

        Returns:
            Resolved path

        Raises:
            ConfigError: If path is outside ~/.agentgrid, the working directory
                or the temporary directory
        """
        resolved_path = path.resolve()
        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]

        for allowed_dir in allowed_dirs:
            if resolved_path.is_relative_to(allowed_dir):
                return resolved_path

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional, must exist)

        Returns:
            Path to config file

        Raises:
            ConfigError: If path is invalid or missing
        """
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
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
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

        logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
        return cls.DEFAULT_CONFIG_DIR

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> AgentGridConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            AgentGridConfig (defaults when no file exists)

        Raises:
            ConfigError: If the file cannot be read or holds invalid values
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return AgentGridConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return AgentGridConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: AgentGridConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file, preserving comments of an existing file.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        if custom_path:
            config_path = cls._validate_config_path(Path(custom_path).expanduser())
        else:
            cls.ensure_config_dir()
            config_path = cls.DEFAULT_CONFIG_FILE

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            data = config.to_dict()
            for key, value in data.items():
                doc[key] = value
            if "timing" not in data and "timing" in doc:
                del doc["timing"]
            if "instructions_dir" not in data and "instructions_dir" in doc:
                del doc["instructions_dir"]

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> AgentGridConfig:
        """Update configuration values.

        Raises:
            ConfigError: If a key is unknown or a value is invalid
        """
        config = cls.load_config(custom_path)
        data = asdict(config)
        for key, value in updates.items():
            if key not in data:
                raise ConfigError(f"Unknown config key: {key}")
            data[key] = value

        updated = AgentGridConfig.from_dict({k: v for k, v in data.items() if v is not None})
        cls.save_config(updated, custom_path)
        return updated

    @classmethod
    def get_timing_policy(cls, config: AgentGridConfig, base: TimingPolicy | None = None) -> TimingPolicy:
        """TimingPolicy with the config's [timing] overrides applied."""
        try:
            return TimingPolicy.from_dict(config.timing or {}, base=base)
        except TimingPolicyError as e:
            raise ConfigError(f"Invalid timing: {e}") from e

    @classmethod
    def resolve_payloads(cls, config: AgentGridConfig, worker_count: int) -> dict[Role, Path | None]:
        """Instruction file of every role of a team.

        Roles whose file does not exist map to None and are skipped during
        delivery.
        """
        payloads: dict[Role, Path | None] = {role: None for role in team_roles(worker_count)}
        if not config.instructions_dir:
            logger.debug("No instructions_dir configured, instructions will not be delivered")
            return payloads

        base_dir = Path(config.instructions_dir).expanduser()
        for role in payloads:
            path = base_dir / config.instructions_file_for(role)
            if path.is_file():
                payloads[role] = path
            else:
                logger.warning(f"Instruction file for {role.title} not found: {path}")
        return payloads

    @classmethod
    def get_worker_count(cls, cli_value: int | None = None, custom_path: str | None = None) -> int:
        """Worker count with CLI override."""
        if cli_value is not None:
            return cli_value
        return cls.load_config(custom_path).worker_count


__all__ = [
    "DEFAULT_LAUNCH_COMMAND",
    "DEFAULT_WORKER_COUNT",
    "AgentGridConfig",
    "ConfigError",
    "ConfigManager",
]
