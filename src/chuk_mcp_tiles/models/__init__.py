"""Response and configuration models for chuk-mcp-tiles."""

from .config import CompositorConfig, LayerConfig, load_config
from .responses import (
    CapabilitiesResponse,
    ErrorResponse,
    HeightfieldResponse,
    ImageResponse,
    LayersResponse,
    LayerStateResponse,
    LayerSummary,
    StatusResponse,
    format_response,
)

__all__ = [
    "CompositorConfig",
    "LayerConfig",
    "load_config",
    "ErrorResponse",
    "LayerSummary",
    "LayersResponse",
    "LayerStateResponse",
    "HeightfieldResponse",
    "ImageResponse",
    "StatusResponse",
    "CapabilitiesResponse",
    "format_response",
]
