"""
Core measurement module - tool adapters and their coordinator.
"""

from .coordinator import (
    CoordinatorState,
    MeasurementSummary,
    MeasurementToolCoordinator,
    parse_tool_name,
)
from .tools import (
    AngleTool,
    AnnotationTool,
    ArrowTool,
    EllipticalAreaTool,
    LengthTool,
    NullSurface,
    RectangularAreaTool,
    TextTool,
    ToolSurface,
)

__all__ = [
    "AngleTool",
    "AnnotationTool",
    "ArrowTool",
    "CoordinatorState",
    "EllipticalAreaTool",
    "LengthTool",
    "MeasurementSummary",
    "MeasurementToolCoordinator",
    "NullSurface",
    "RectangularAreaTool",
    "TextTool",
    "ToolSurface",
    "parse_tool_name",
]
