"""
Configuration and settings for SkyCommand ATC.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_HOST", "0.0.0.0")
    )
    port: int = Field(
        default_factory=lambda: int(os.environ.get("SKYCOMMAND_PORT", "8080"))
    )
    cors_origins: list[str] = Field(default=["*"])


class ModelConfig(BaseModel):
    """Vision chat-completion settings."""

    api_key: str = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_AI_API_KEY", "")
    )
    # Custom provider used when the key prefix matches nothing
    base_url: str | None = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_AI_BASE_URL") or None
    )
    # Overrides the OpenRouter and custom provider model
    model: str | None = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_AI_MODEL") or None
    )
    chutes_model: str = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_CHUTES_MODEL", "Qwen/Qwen3-32B")
    )
    max_tokens: int = Field(default=150)
    temperature: float = Field(default=0.2)
    timeout: float = Field(default=60.0)
    app_title: str = Field(default="SkyCommand AI-ATC")


class CaptureConfig(BaseModel):
    """Frame capture configuration."""

    interval_s: float = Field(default=5.0)  # Idle-loop capture period
    target_width: int = Field(default=768)
    jpeg_quality: int = Field(default=70)
    monitor: int = Field(default=1)  # mss monitor index (0 = all screens)


class SpeechConfig(BaseModel):
    """Speech input/output configuration."""

    language: str = Field(default="en-US")
    rate: float = Field(default=1.1)
    pitch: float = Field(default=1.05)
    volume: float = Field(default=1.0)
    tts_command: str = Field(default="espeak-ng")
    restart_delay_s: float = Field(default=0.5)


class LogSinkConfig(BaseModel):
    """Flight log persistence configuration."""

    supabase_url: str | None = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_SUPABASE_URL") or None
    )
    supabase_key: str | None = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_SUPABASE_KEY") or None
    )
    table: str = Field(default="flight_logs")
    timeout: float = Field(default=10.0)


class PilotConfig(BaseModel):
    """Pilot profile."""

    callsign: str = Field(
        default_factory=lambda: os.environ.get("SKYCOMMAND_CALLSIGN", "Unknown")
    )


class Config(BaseModel):
    """Main configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    log_sink: LogSinkConfig = Field(default_factory=LogSinkConfig)
    pilot: PilotConfig = Field(default_factory=PilotConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load a config from a YAML file.

        Sections and keys that do not correspond to config fields are
        silently ignored; missing sections keep their defaults.
        """
        import yaml

        yaml_path = Path(path).expanduser()
        with open(yaml_path) as f:
            raw = yaml.safe_load(f) or {}

        sections = {}
        for name, field in cls.model_fields.items():
            values = raw.get(name)
            if not isinstance(values, dict):
                continue
            section_cls = field.annotation
            known = set(section_cls.model_fields)
            sections[name] = section_cls(**{k: v for k, v in values.items() if k in known})

        return cls(**sections)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration."""
    global _config
    _config = config
