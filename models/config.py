"""Configuration loading and validation."""
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PATTERN = r"\$\{([^}]+)\}"
_MISSING = "__MISSING_ENV__"


def _substitute_env(value: str, optional: bool) -> Optional[str]:
    """Resolve ${ENV_VAR} references in a string.

    For optional (credential) fields a missing variable yields None, which
    lets the owning adapter report itself unavailable. For required fields a
    missing variable raises ValueError.
    """

    def replacer(match):
        env_var = match.group(1)
        resolved = os.getenv(env_var)
        if resolved is None:
            if optional:
                return _MISSING
            raise ValueError(
                f"Environment variable '{env_var}' is not set. "
                f"Required for configuration."
            )
        return resolved

    result = re.sub(ENV_PATTERN, replacer, value)
    if optional and _MISSING in result:
        return None
    return result


class BackendConfig(BaseModel):
    """OpenAI-compatible chat completion backend."""

    type: Literal["openai"] = "openai"
    base_url: str
    model: str
    api_key: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    timeout: int = Field(default=60, ge=1, le=600)
    max_retries: int = Field(default=3, ge=1, le=10)
    system_prompt: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def resolve_base_url(cls, v: str) -> str:
        return _substitute_env(v, optional=False)

    @field_validator("api_key")
    @classmethod
    def resolve_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _substitute_env(v, optional=True)


class DispatchConfig(BaseModel):
    """Tool dispatch settings."""

    call_timeout: float = Field(
        default=30.0, gt=0, le=600, description="Seconds allowed per adapter call"
    )
    probe_timeout: float = Field(
        default=10.0, gt=0, le=120, description="Seconds allowed per connectivity probe"
    )
    validate_arguments: bool = Field(
        default=True,
        description="Reject calls whose arguments violate the tool schema (False logs only)",
    )


class HostedBackendConfig(BaseModel):
    """A hosted MCP tool server reached over a fresh session per call."""

    url: str
    api_key: Optional[str] = None
    profile: Optional[str] = None
    priority: Literal["primary", "secondary"] = "primary"
    transport: Literal["streamable-http", "sse"] = "streamable-http"
    timeout: float = Field(default=30.0, gt=0, le=600)
    enabled: bool = True
    inject_arguments: dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Arguments merged into every call (e.g. upstream API keys)",
    )

    @field_validator("url")
    @classmethod
    def resolve_url(cls, v: str) -> str:
        # url may embed a credential query string; a missing one disables the backend
        resolved = _substitute_env(v, optional=True)
        return resolved if resolved is not None else ""

    @field_validator("api_key", "profile")
    @classmethod
    def resolve_credentials(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _substitute_env(v, optional=True)

    @field_validator("inject_arguments")
    @classmethod
    def resolve_injected(cls, v: dict[str, Optional[str]]) -> dict[str, Optional[str]]:
        return {
            key: _substitute_env(value, optional=True) if isinstance(value, str) else value
            for key, value in v.items()
        }


class LocalToolConfig(BaseModel):
    """An in-process tool whose handler is imported from a module path."""

    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: Optional[str] = Field(
        default=None, description="Handler as 'package.module:function'"
    )
    requires_env: list[str] = Field(
        default_factory=list, description="Environment credentials the tool needs"
    )
    aliases: list[str] = Field(default_factory=list)
    fallback_for: Optional[str] = Field(
        default=None,
        description="Hosted backend this tool stands in for when disconnected",
    )
    fallback_tool: Optional[str] = Field(
        default=None,
        description="Name of the hosted tool this tool backs up (defaults to own name)",
    )

    @field_validator("handler")
    @classmethod
    def validate_handler_path(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and ":" not in v:
            raise ValueError(
                f"handler must look like 'package.module:function', got '{v}'"
            )
        return v


class LoggingConfig(BaseModel):
    """Logging settings for the server entry point."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: Optional[str] = "tool_gateway.log"


class Config(BaseModel):
    """Root configuration model."""

    version: str
    backend: Optional[BackendConfig] = None
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    hosted_backends: dict[str, HostedBackendConfig] = Field(default_factory=dict)
    local_tools: dict[str, LocalToolConfig] = Field(default_factory=dict)
    tool_aliases: dict[str, str] = Field(
        default_factory=dict,
        description="Extra synonyms: alternate spelling -> canonical tool name",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def model_post_init(self, __context):
        """Post-initialization validation."""
        for name, tool in self.local_tools.items():
            if tool.fallback_for and tool.fallback_for not in self.hosted_backends:
                raise ValueError(
                    f"Local tool '{name}' falls back for unknown hosted backend "
                    f"'{tool.fallback_for}'. Known backends: "
                    f"{', '.join(self.hosted_backends) or 'none'}"
                )


def configure_logging(
    settings: Optional[LoggingConfig] = None, log_dir: Optional[Path] = None
) -> None:
    """
    Configure root logging: optional log file plus stderr.

    stdout is left alone because the MCP stdio transport owns it.
    """
    settings = settings or LoggingConfig()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file:
        log_path = Path(settings.file)
        if log_dir is not None and not log_path.is_absolute():
            log_path = log_dir / log_path
        handlers.insert(0, logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, settings.level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def load_config(path: str = "config.yaml") -> Config:
    """
    Load configuration from YAML file.

    Args:
        path: Path to config file (default: config.yaml)

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
    """
    # Load environment variables from .env file (if it exists)
    load_dotenv()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    return Config(**data)
