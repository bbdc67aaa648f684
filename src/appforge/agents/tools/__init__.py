from .base import ToolArgumentsError, ToolDefinition, ToolRegistry, with_lifecycle
from .queue_request import QUEUE_REQUEST_ACK, EditAppArgs, build_edit_app_tool
from .weather import tool_weather_definition
from .web_search import tool_web_search_definition

__all__ = [
    "ToolArgumentsError",
    "ToolDefinition",
    "ToolRegistry",
    "with_lifecycle",
    "QUEUE_REQUEST_ACK",
    "EditAppArgs",
    "build_edit_app_tool",
    "tool_weather_definition",
    "tool_web_search_definition",
]
