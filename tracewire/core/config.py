"""
Tracewire Configuration

Centralized configuration for the profiler and the collector client with:
- Environment-based configuration
- Type-safe settings with Pydantic
- JSON config file loading
"""

from __future__ import annotations

import json
import os
import socket
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for tracewire."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CollectorConfig(BaseModel):
    """Where and how to reach the collector."""
    host: str = "collector.example.com"
    port: int = 443
    ip: Optional[str] = None
    ssl: bool = True
    timeout: float = 120.0  # seconds
    marshal_format: Literal["json", "msgpack"] = "json"
    protocol_version: int = 9

    @field_validator("timeout")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class ProfilerConfig(BaseModel):
    """Configuration for the thread profiler."""
    enabled: bool = True
    default_sample_period: float = 0.1  # seconds between polls
    default_duration: float = 120.0  # seconds
    # Increment total_count on every node of a merged path
    count_total_samples: bool = False
    stop_join_timeout: float = 5.0


class AgentConfig(BaseModel):
    """Identity reported during the connect handshake."""
    app_name: list[str] = Field(default_factory=lambda: ["My Application"])
    language: str = "python"
    host: str = Field(default_factory=socket.gethostname)
    pid: int = Field(default_factory=os.getpid)
    command_poll_interval: float = 60.0  # seconds


class TracewireConfig(BaseSettings):
    """
    Main tracewire configuration.

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with TRACEWIRE_
    (e.g., TRACEWIRE_LICENSE_KEY=abc, TRACEWIRE_COLLECTOR__PORT=8081).
    """

    license_key: str = ""
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] = "json"

    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    profiler: ProfilerConfig = Field(default_factory=ProfilerConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    model_config = {
        "env_prefix": "TRACEWIRE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "TracewireConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Global configuration instance (lazy loaded)
_config: Optional[TracewireConfig] = None


def get_config() -> TracewireConfig:
    """Get the global tracewire configuration instance."""
    global _config
    if _config is None:
        _config = TracewireConfig()
    return _config


def set_config(config: TracewireConfig) -> None:
    """Set the global tracewire configuration instance."""
    global _config
    _config = config
