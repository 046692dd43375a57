"""Pydantic schemas shared by agent modules."""

from shared.schemas.common import HealthResponse
from shared.schemas.tools import (
    ModuleManifest,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolResult,
)

__all__ = [
    "HealthResponse",
    "ModuleManifest",
    "ToolCall",
    "ToolDefinition",
    "ToolParameter",
    "ToolResult",
]
