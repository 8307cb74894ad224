"""
Response models for chuk-mcp-tiles tools.

All tool responses are Pydantic models for type safety and consistent API.
"""

from pydantic import BaseModel, ConfigDict, Field

from ..constants import ServerConfig


def format_response(model: BaseModel, output_mode: str = "json") -> str:
    """Format a response model as JSON or human-readable text.

    Args:
        model: Pydantic response model instance
        output_mode: "json" (default) or "text"

    Returns:
        Formatted string
    """
    if output_mode == "text" and hasattr(model, "to_text"):
        return str(model.to_text())
    return str(model.model_dump_json())


class ErrorResponse(BaseModel):
    """Error response model for tool failures."""

    model_config = ConfigDict(extra="forbid")

    error: str = Field(..., description="Error message describing what went wrong")

    def to_text(self) -> str:
        return f"Error: {self.error}"


class LayerSummary(BaseModel):
    """Summary information about one raster layer."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Layer name")
    kind: str = Field(..., description="Raster kind (image or elevation)")
    is_open: bool = Field(..., description="Whether the layer is open")
    status: str = Field(..., description="Layer status (code and message)")
    profile: str | None = Field(None, description="Native tiling profile, once discovered")
    offset: bool = Field(False, description="Whether the layer adds to the base terrain")
    min_level: int = Field(..., description="Minimum valid tile level", ge=0)
    max_level: int | None = Field(None, description="Maximum valid tile level")
    max_data_level: int | None = Field(None, description="Deepest level with real data")
    tile_size: int = Field(..., description="Native tile size in texels", ge=1)
    priority: int = Field(..., description="Position in its stack (0 = lowest priority)", ge=0)

    def to_text(self) -> str:
        state = "open" if self.is_open else "closed"
        kind = f"{self.kind} offset" if self.offset else self.kind
        levels = f"{self.min_level}-{self.max_level if self.max_level is not None else '*'}"
        return f"[{self.priority}] {self.name}: {kind}, {state}, levels {levels} ({self.status})"


class LayersResponse(BaseModel):
    """Response model for listing configured layers."""

    model_config = ConfigDict(extra="forbid")

    profile: str = Field(..., description="Map tiling profile")
    layers: list[LayerSummary] = Field(..., description="Configured layers")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [self.message, f"Profile: {self.profile}", ""]
        for layer in self.layers:
            lines.append(f"  {layer.to_text()}")
        return "\n".join(lines)


class LayerStateResponse(BaseModel):
    """Response model for opening or closing a layer."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Layer name")
    kind: str = Field(..., description="Raster kind")
    is_open: bool = Field(..., description="Whether the layer is now open")
    status: str = Field(..., description="Layer status after the operation")
    profile: str | None = Field(None, description="Native tiling profile")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [self.message, f"Status: {self.status}"]
        if self.profile:
            lines.append(f"Profile: {self.profile}")
        return "\n".join(lines)


class HeightfieldResponse(BaseModel):
    """Response model for an assembled elevation tile."""

    model_config = ConfigDict(extra="forbid")

    key: str = Field(..., description="Tile key as level/x/y")
    profile: str = Field(..., description="Map tiling profile")
    has_data: bool = Field(..., description="Whether real (non-fallback) data contributed")
    artifact_ref: str | None = Field(None, description="Artifact store reference for the tile")
    preview_ref: str | None = Field(None, description="Hillshade PNG preview reference")
    crs: str | None = Field(None, description="Coordinate reference system of the tile")
    bounds: list[float] = Field(default_factory=list, description="[xmin, ymin, xmax, ymax]")
    shape: list[int] = Field(default_factory=list, description="Grid shape [height, width]")
    elevation_range: list[float] = Field(
        default_factory=list, description="[min, max] elevation in metres"
    )
    resolution_range: list[float] = Field(
        default_factory=list, description="[finest, coarsest] per-texel source resolution"
    )
    interpolation: str = Field(..., description="Interpolation method used")
    output_format: str = Field(..., description="Stored format (geotiff or png)")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        if not self.has_data:
            return self.message
        lines = [
            f"Heightfield tile: {self.key} ({self.profile})",
            f"Artifact: {self.artifact_ref}",
            f"Shape: {self.shape[0]}x{self.shape[1]} ({self.crs})",
        ]
        if self.elevation_range:
            elev_min, elev_max = self.elevation_range
            lines.append(f"Elevation range: {elev_min:.1f}m to {elev_max:.1f}m")
        if self.resolution_range:
            finest, coarsest = self.resolution_range
            lines.append(f"Source resolution: {finest:.6g} to {coarsest:.6g}")
        lines.append(f"Interpolation: {self.interpolation}")
        if self.preview_ref:
            lines.append(f"Preview: {self.preview_ref}")
        return "\n".join(lines)


class ImageResponse(BaseModel):
    """Response model for an assembled imagery tile."""

    model_config = ConfigDict(extra="forbid")

    key: str = Field(..., description="Tile key as level/x/y")
    profile: str = Field(..., description="Map tiling profile")
    has_data: bool = Field(..., description="Whether any layer produced data")
    artifact_ref: str | None = Field(None, description="Artifact store reference for the tile")
    crs: str | None = Field(None, description="Coordinate reference system of the tile")
    bounds: list[float] = Field(default_factory=list, description="[xmin, ymin, xmax, ymax]")
    shape: list[int] = Field(default_factory=list, description="Image shape [height, width]")
    opaque_fraction: float = Field(0.0, description="Fraction of opaque pixels", ge=0, le=1)
    layers: list[str] = Field(default_factory=list, description="Layers composited")
    output_format: str = Field(..., description="Stored format (png or geotiff)")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        if not self.has_data:
            return self.message
        lines = [
            f"Image tile: {self.key} ({self.profile})",
            f"Artifact: {self.artifact_ref}",
            f"Shape: {self.shape[0]}x{self.shape[1]} ({self.crs})",
            f"Opaque: {self.opaque_fraction * 100:.1f}%",
            f"Layers: {', '.join(self.layers)}",
        ]
        return "\n".join(lines)


class StatusResponse(BaseModel):
    """Response model for server status queries."""

    model_config = ConfigDict(extra="forbid")

    server: str = Field(default=ServerConfig.NAME, description="Server name")
    version: str = Field(default=ServerConfig.VERSION, description="Server version")
    profile: str = Field(..., description="Map tiling profile")
    layer_count: int = Field(..., description="Number of configured layers", ge=0)
    open_layers: list[str] = Field(..., description="Names of open layers")
    geoid: bool = Field(default=False, description="Whether a geoid fills no-data texels")
    storage_provider: str = Field(..., description="Active storage provider (memory/filesystem/s3)")
    artifact_store_available: bool = Field(
        default=False, description="Whether artifact store is available"
    )

    def to_text(self) -> str:
        store_status = "available" if self.artifact_store_available else "not available"
        lines = [
            f"{self.server} v{self.version}",
            f"Profile: {self.profile}",
            f"Layers: {self.layer_count} ({len(self.open_layers)} open)",
            f"Geoid: {'yes' if self.geoid else 'no'}",
            f"Storage: {self.storage_provider}",
            f"Artifact store: {store_status}",
        ]
        return "\n".join(lines)


class CapabilitiesResponse(BaseModel):
    """Response model for server capabilities listing."""

    model_config = ConfigDict(extra="forbid")

    server: str = Field(..., description="Server name")
    version: str = Field(..., description="Server version")
    profiles: list[str] = Field(..., description="Supported tiling profiles")
    layers: list[LayerSummary] = Field(..., description="Configured layers")
    interpolation_methods: list[str] = Field(..., description="Supported interpolation methods")
    encodings: list[str] = Field(..., description="Supported elevation encodings")
    output_formats: list[str] = Field(..., description="Supported output formats")
    max_tile_size: int = Field(..., description="Largest heightfield edge in texels", ge=1)
    tool_count: int = Field(..., description="Number of available tools", ge=0)
    llm_guidance: str = Field(..., description="LLM-friendly usage guidance for the server")
    message: str = Field(..., description="Operation result message")

    def to_text(self) -> str:
        lines = [
            f"{self.server} v{self.version}",
            f"Tools: {self.tool_count}",
            f"Profiles: {', '.join(self.profiles)}",
            f"Layers: {', '.join(layer.name for layer in self.layers) or 'none'}",
            f"Interpolation: {', '.join(self.interpolation_methods)}",
            f"Encodings: {', '.join(self.encodings)}",
            f"Output formats: {', '.join(self.output_formats)}",
            f"Max tile size: {self.max_tile_size}",
            f"Guidance: {self.llm_guidance}",
        ]
        return "\n".join(lines)
