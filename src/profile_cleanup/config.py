"""Configuration management for profile cleanup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

TRANSPORTS = ("local", "winrm")

# LocalSystem, LocalService, NetworkService
DEFAULT_SYSTEM_SIDS = ("S-1-5-18", "S-1-5-19", "S-1-5-20")


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""


def parse_bool(value: Any, default: bool) -> bool:
    """Parse a YAML value as a boolean.

    Accepts real booleans, integers and the usual string spellings
    ("true", "yes", "on", "1"). Anything else is False; None gives the default.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return str(value).strip().lower() in ("true", "yes", "on", "1")


def _string_list(key: str, value: Any) -> list[str]:
    """Read a YAML list of strings; a lone string is a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list, got {type(value).__name__}")
    return [str(v) for v in value]


def _default_base_dir() -> Path:
    appdata = os.environ.get("APPDATA")
    if appdata:
        return Path(appdata) / "profile-cleanup"
    return Path.home() / ".config/profile-cleanup"


@dataclass
class WinRMSettings:
    """Connection settings for the WinRM transport."""

    port: int = 5985
    transport: str = "ntlm"
    use_ssl: bool = False
    verify_ssl: bool = True
    username: str | None = None
    password_env: str = "PROFILE_CLEANUP_PASSWORD"


@dataclass
class CleanupConfig:
    """Configuration for profile cleanup runs."""

    # How PowerShell is reached: "local" runs powershell.exe here and talks
    # CIM to the target, "winrm" runs the script on the target itself
    transport: str = "local"
    powershell_executable: str = "powershell.exe"
    command_timeout: int = 120  # seconds per PowerShell invocation

    winrm: WinRMSettings = field(default_factory=WinRMSettings)

    # Never eligible for removal
    system_sids: list[str] = field(default_factory=lambda: list(DEFAULT_SYSTEM_SIDS))

    # Always merged into the operator's keep list
    default_keep_names: list[str] = field(default_factory=list)

    confirm_before_delete: bool = True

    # Per-run audit trail
    audit_log_dir: Path = field(default_factory=lambda: _default_base_dir() / "audit")

    # Logging
    log_file: Path = field(default_factory=lambda: _default_base_dir() / "profile-cleanup.log")
    log_level: str = "INFO"

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the default configuration file path."""
        return _default_base_dir() / "config.yaml"

    @classmethod
    def load(cls, config_path: Path | None = None) -> CleanupConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Uses default if None.

        Returns:
            Loaded and validated configuration.

        Raises:
            ConfigError: If a value is out of range.

        """
        if config_path is None:
            config_path = cls.get_config_path()

        if not config_path.exists():
            return cls()

        try:
            with config_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Invalid YAML in {config_path}: expected a mapping")

        try:
            config = cls._from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {config_path}: {e}") from e
        config.validate()
        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> CleanupConfig:
        """Create config from dictionary."""
        config = cls()

        # Simple fields
        if "transport" in data:
            config.transport = str(data["transport"]).lower()
        if "powershell_executable" in data:
            config.powershell_executable = str(data["powershell_executable"])
        if "command_timeout" in data:
            config.command_timeout = int(data["command_timeout"])
        if "confirm_before_delete" in data:
            config.confirm_before_delete = parse_bool(data["confirm_before_delete"], True)
        if "audit_log_dir" in data:
            config.audit_log_dir = Path(os.path.expanduser(data["audit_log_dir"]))

        if "system_sids" in data:
            config.system_sids = _string_list("system_sids", data["system_sids"])
        if "default_keep_names" in data:
            config.default_keep_names = _string_list("default_keep_names", data["default_keep_names"])

        # WinRM settings
        if "winrm" in data:
            winrm_cfg = data["winrm"] or {}
            if "port" in winrm_cfg:
                config.winrm.port = int(winrm_cfg["port"])
            if "transport" in winrm_cfg:
                config.winrm.transport = str(winrm_cfg["transport"])
            if "use_ssl" in winrm_cfg:
                config.winrm.use_ssl = parse_bool(winrm_cfg["use_ssl"], False)
            if "verify_ssl" in winrm_cfg:
                config.winrm.verify_ssl = parse_bool(winrm_cfg["verify_ssl"], True)
            if "username" in winrm_cfg:
                config.winrm.username = winrm_cfg["username"] or None
            if "password_env" in winrm_cfg:
                config.winrm.password_env = str(winrm_cfg["password_env"])

        # Logging
        if "logging" in data:
            logging_cfg = data["logging"] or {}
            if "file" in logging_cfg:
                config.log_file = Path(os.path.expanduser(logging_cfg["file"]))
            if "level" in logging_cfg:
                config.log_level = str(logging_cfg["level"]).upper()

        return config

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value found.

        """
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"Unknown transport {self.transport!r}, expected one of {', '.join(TRANSPORTS)}")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"Invalid log level: {self.log_level!r}")
        if self.command_timeout <= 0:
            raise ConfigError("command_timeout must be positive")
        if not 0 < self.winrm.port < 65536:
            raise ConfigError(f"Invalid WinRM port: {self.winrm.port}")

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Uses default if None.

        """
        if config_path is None:
            config_path = self.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "transport": self.transport,
            "powershell_executable": self.powershell_executable,
            "command_timeout": self.command_timeout,
            "winrm": {
                "port": self.winrm.port,
                "transport": self.winrm.transport,
                "use_ssl": self.winrm.use_ssl,
                "verify_ssl": self.winrm.verify_ssl,
                "username": self.winrm.username,
                "password_env": self.winrm.password_env,
            },
            "system_sids": list(self.system_sids),
            "default_keep_names": list(self.default_keep_names),
            "confirm_before_delete": self.confirm_before_delete,
            "audit_log_dir": str(self.audit_log_dir),
            "logging": {
                "file": str(self.log_file),
                "level": self.log_level,
            },
        }

        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
