"""
Configuration management for SecureLink.

Session limits and framing defaults live in a single SessionConfig object
that is handed to the SessionManager. Values can come from a JSON file,
from environment variables, or from code.
"""

import json
import os
from dataclasses import dataclass, fields, asdict
from typing import Optional

from .errors import ConfigError


# Protocol defaults
MAX_SESSION_AGE_SECONDS = 24 * 60 * 60
MAX_MESSAGES_PER_SESSION = 1_000_000
REPLAY_WINDOW_SIZE = 64
COMPRESSION_THRESHOLD = 1024
DEFAULT_TTL = 32


@dataclass
class SessionConfig:
    """
    Tunable limits for sessions and frames.

    Fields:
        max_session_age: Seconds after creation before a session must be rekeyed
        max_messages: Per-direction message ceiling before a session must be rekeyed
        replay_window: Replay window size (1-64)
        compression_threshold: Payloads larger than this are compressed
        default_ttl: TTL written into outgoing frames (1-255)
        nonce_time_mixing: XOR the nonce's sequence bytes with a per-session
            mask drawn from the clock when keys are installed
    """
    max_session_age: float = MAX_SESSION_AGE_SECONDS
    max_messages: int = MAX_MESSAGES_PER_SESSION
    replay_window: int = REPLAY_WINDOW_SIZE
    compression_threshold: int = COMPRESSION_THRESHOLD
    default_ttl: int = DEFAULT_TTL
    nonce_time_mixing: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check that every field is in range.

        Raises:
            ConfigError: If a value is out of range
        """
        if self.max_session_age <= 0:
            raise ConfigError("max_session_age must be positive")
        if not (0 < self.max_messages <= 0xFFFFFFFF):
            raise ConfigError("max_messages must be between 1 and 2^32-1")
        if not (1 <= self.replay_window <= 64):
            raise ConfigError("replay_window must be between 1 and 64")
        if self.compression_threshold < 0:
            raise ConfigError("compression_threshold must be non-negative")
        if not (1 <= self.default_ttl <= 255):
            raise ConfigError("default_ttl must be between 1 and 255")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionConfig':
        """
        Build a config from a dictionary.

        Raises:
            ConfigError: On unknown keys or bad values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path: str) -> 'SessionConfig':
        """
        Load configuration from a JSON file.

        Args:
            path: Path to a JSON object with SessionConfig field names

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if not os.path.exists(path):
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, prefix: str = "SECURELINK_",
                 base: Optional['SessionConfig'] = None) -> 'SessionConfig':
        """
        Overlay environment variables on a base config.

        SECURELINK_MAX_SESSION_AGE=3600 sets max_session_age, and so on.

        Raises:
            ConfigError: If a variable cannot be converted
        """
        values = (base or cls()).to_dict()
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _convert(f.name, raw, f.type)
        return cls.from_dict(values)


def _convert(name: str, raw: str, target: type):
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{name}: expected a boolean, got {raw!r}")
    try:
        return target(raw)
    except ValueError as e:
        raise ConfigError(f"{name}: cannot parse {raw!r}") from e


def load_config(path: Optional[str] = None) -> SessionConfig:
    """
    Load configuration from an optional file, then apply environment overrides.

    Args:
        path: Optional JSON config file

    Returns:
        Validated SessionConfig
    """
    base = SessionConfig.from_file(path) if path else SessionConfig()
    return SessionConfig.from_env(base=base)
