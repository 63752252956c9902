from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ValidationError, model_validator
import os

from agent_hub.domain.models.agent_state import GenerationConfig
from agent_hub.errors import ConfigError


class ContextSettings(BaseModel):
    """Context window sizing shared by all agents"""
    max_messages: int = Field(default=50, gt=0, description="Hard cap on the context window")
    request_window: int = Field(default=10, gt=0, description="Most recent messages sent per request")
    summarize_threshold: int = Field(default=20, gt=0, description="Context length that allows summarization")
    summarize_keep_recent: int = Field(default=10, ge=0, description="Messages kept verbatim after summarization")

    @model_validator(mode="after")
    def _check_summary_bounds(self) -> "ContextSettings":
        if self.summarize_keep_recent >= self.summarize_threshold:
            raise ValueError("summarize_keep_recent must be smaller than summarize_threshold")
        return self


class Settings(BaseModel):
    """Runtime configuration"""
    api_base_url: str = "http://localhost:8080/api"
    api_token: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    default_model: str = "gpt-4"
    default_temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    default_max_tokens: int = Field(default=2000, gt=0)

    context: ContextSettings = Field(default_factory=ContextSettings)

    storage_dir: Optional[str] = None

    log_level: str = "INFO"
    log_format: str = "json"

    server_host: str = "0.0.0.0"
    server_port: int = 8000

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Load settings from AGENT_HUB_* variables, falling back to defaults"""

        env = os.environ if environ is None else environ

        top_level = {
            "api_base_url": env.get("AGENT_HUB_API_URL"),
            "api_token": env.get("AGENT_HUB_API_TOKEN"),
            "request_timeout": env.get("AGENT_HUB_REQUEST_TIMEOUT"),
            "max_retries": env.get("AGENT_HUB_MAX_RETRIES"),
            "retry_base_delay": env.get("AGENT_HUB_RETRY_BASE_DELAY"),
            "default_model": env.get("AGENT_HUB_MODEL"),
            "default_temperature": env.get("AGENT_HUB_TEMPERATURE"),
            "default_max_tokens": env.get("AGENT_HUB_MAX_TOKENS"),
            "storage_dir": env.get("AGENT_HUB_STORAGE_DIR"),
            "log_level": env.get("LOG_LEVEL"),
            "log_format": env.get("LOG_FORMAT"),
            "server_host": env.get("AGENT_HUB_HOST"),
            "server_port": env.get("AGENT_HUB_PORT"),
        }
        context = {
            "max_messages": env.get("AGENT_HUB_CONTEXT_MAX"),
            "request_window": env.get("AGENT_HUB_CONTEXT_WINDOW"),
            "summarize_threshold": env.get("AGENT_HUB_SUMMARIZE_THRESHOLD"),
            "summarize_keep_recent": env.get("AGENT_HUB_SUMMARIZE_KEEP"),
        }

        values: Dict[str, Any] = {k: v for k, v in top_level.items() if v not in (None, "")}
        values["context"] = {k: v for k, v in context.items() if v not in (None, "")}

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def generation_defaults(self) -> GenerationConfig:
        """GenerationConfig seeded from the default_* fields"""
        return GenerationConfig(
            temperature=self.default_temperature,
            max_tokens=self.default_max_tokens,
            model=self.default_model
        )
