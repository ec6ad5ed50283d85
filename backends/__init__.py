"""AI chat backend factory and exports."""
from backends.base_http import BaseHTTPBackend, is_retryable_http_error
from backends.openai_compat import OpenAICompatibleBackend
from models.config import BackendConfig


def create_backend(config: BackendConfig) -> BaseHTTPBackend:
    """
    Factory function to create the AI chat backend from configuration.

    Args:
        config: Backend configuration

    Returns:
        Backend instance

    Raises:
        ValueError: If the backend type is not supported
        TypeError: If config is not a BackendConfig
    """
    if not isinstance(config, BackendConfig):
        raise TypeError(f"Invalid config type: {type(config)}. Expected BackendConfig")

    backends = {
        "openai": OpenAICompatibleBackend,
    }
    if config.type not in backends:
        raise ValueError(
            f"Unsupported backend type: '{config.type}'. "
            f"Supported types: {', '.join(backends.keys())}"
        )

    return backends[config.type](
        base_url=config.base_url,
        model=config.model,
        timeout=config.timeout,
        max_retries=config.max_retries,
        api_key=config.api_key,
        headers=config.headers,
        system_prompt=config.system_prompt,
    )


__all__ = [
    "BaseHTTPBackend",
    "OpenAICompatibleBackend",
    "create_backend",
    "is_retryable_http_error",
]
