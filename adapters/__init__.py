"""Tool adapter factory and exports."""
import logging

from adapters.base import BaseToolAdapter, ConnectionState
from adapters.hosted import HostedMCPAdapter
from adapters.local import LocalToolAdapter, load_handler
from models.config import Config, HostedBackendConfig
from models.schema import ToolSource

logger = logging.getLogger(__name__)

PRIORITY_SOURCES = {
    "primary": ToolSource.HOSTED_PRIMARY,
    "secondary": ToolSource.HOSTED_SECONDARY,
}


def create_hosted_adapter(name: str, config: HostedBackendConfig) -> HostedMCPAdapter:
    """
    Factory function to create a hosted MCP adapter from configuration.

    Args:
        name: Backend name (e.g., 'smithery')
        config: Hosted backend configuration

    Returns:
        HostedMCPAdapter instance

    Raises:
        TypeError: If config is not a HostedBackendConfig
    """
    if not isinstance(config, HostedBackendConfig):
        raise TypeError(
            f"Invalid config type: {type(config)}. Expected HostedBackendConfig"
        )

    return HostedMCPAdapter(
        name=name,
        url=config.url,
        api_key=config.api_key,
        profile=config.profile,
        source=PRIORITY_SOURCES[config.priority],
        transport=config.transport,
        timeout=config.timeout,
        inject_arguments=config.inject_arguments,
    )


def create_local_adapter(config: Config) -> LocalToolAdapter:
    """
    Build the local adapter and register every configured handler.

    Tools whose handler cannot be imported are logged and skipped.
    """
    adapter = LocalToolAdapter()

    for tool_name, tool_config in config.local_tools.items():
        if not tool_config.handler:
            logger.warning(f"Local tool '{tool_name}' has no handler configured, skipping")
            continue
        try:
            handler = load_handler(tool_config.handler)
        except Exception as e:
            logger.error(f"Failed to load handler for local tool '{tool_name}': {e}")
            continue

        aliases = list(tool_config.aliases)
        if tool_config.fallback_tool and tool_config.fallback_tool not in aliases:
            aliases.append(tool_config.fallback_tool)

        adapter.register_handler(
            tool_name,
            handler,
            description=tool_config.description,
            parameters=tool_config.parameters,
            requires_env=tool_config.requires_env,
            aliases=aliases,
            fallback_for=tool_config.fallback_for,
            fallback_tool=tool_config.fallback_tool,
        )

    return adapter


def create_hosted_adapters(config: Config) -> dict[str, HostedMCPAdapter]:
    """Create one adapter per enabled hosted backend, primaries first."""

    adapters: dict[str, HostedMCPAdapter] = {}
    ordered = sorted(
        config.hosted_backends.items(),
        key=lambda item: PRIORITY_SOURCES[item[1].priority].rank,
    )
    for name, backend_config in ordered:
        if not backend_config.enabled:
            logger.info(f"Hosted backend '{name}' disabled in config")
            continue
        try:
            adapters[name] = create_hosted_adapter(name, backend_config)
            logger.info(f"Initialized hosted adapter: {name} ({backend_config.priority})")
        except Exception as e:
            logger.error(f"Failed to create adapter for {name}: {e}")
    return adapters


__all__ = [
    "BaseToolAdapter",
    "ConnectionState",
    "HostedMCPAdapter",
    "LocalToolAdapter",
    "create_hosted_adapter",
    "create_hosted_adapters",
    "create_local_adapter",
    "load_handler",
]
