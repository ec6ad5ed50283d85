"""Point the MCP server at the integration test configuration."""
import os
from pathlib import Path

os.environ.setdefault(
    "TOOL_GATEWAY_CONFIG", str(Path(__file__).parent / "gateway_config.yaml")
)
