"""
Layer configuration for chuk-mcp-tiles.

The compositor is described by a JSON document (path in the
``CHUK_TILES_CONFIG`` environment variable) validated by these models.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import (
    ALL_PROFILE_NAMES,
    DEFAULT_INTERPOLATION,
    DEFAULT_PROFILE,
    ENCODINGS,
    INTERPOLATION_METHODS,
    Encoding,
    ErrorMessages,
    RasterKind,
)


def _check_profile(value: str | None) -> str | None:
    if value is not None and value not in ALL_PROFILE_NAMES:
        raise ValueError(ErrorMessages.UNKNOWN_PROFILE.format(value, ", ".join(ALL_PROFILE_NAMES)))
    return value


class LayerConfig(BaseModel):
    """One raster layer backed by a GeoTIFF/COG path or URL."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Unique layer name", min_length=1)
    kind: RasterKind = Field(..., description="Raster kind: image or elevation")
    path: str = Field(..., description="Path or URL of a rasterio-readable dataset")
    profile: str | None = Field(
        None, description="Tiling profile override (otherwise discovered from the dataset)"
    )
    min_level: int = Field(0, description="Minimum valid tile level", ge=0)
    max_level: int | None = Field(None, description="Maximum valid tile level", ge=0)
    max_data_level: int | None = Field(
        None, description="Deepest level with real data; deeper keys fall back", ge=0
    )
    tile_size: int | None = Field(None, description="Native tile size in texels", ge=2)
    interpolation: str = Field(DEFAULT_INTERPOLATION, description="Sampling interpolation")
    enabled: bool = Field(True, description="Whether the layer may be opened")
    open_on_start: bool = Field(True, description="Open the layer when the server starts")
    bands: list[int] | None = Field(None, description="1-based band indexes to read")

    offset: bool = Field(False, description="Elevation only: add to the base terrain")
    no_data_value: float | None = Field(None, description="Elevation only: source no-data value")
    min_valid_value: float | None = Field(None, description="Elevation only: minimum valid height")
    max_valid_value: float | None = Field(None, description="Elevation only: maximum valid height")
    encoding: str = Field(Encoding.SINGLE_CHANNEL, description="Elevation only: pixel encoding")

    @field_validator("profile")
    @classmethod
    def _validate_profile(cls, value: str | None) -> str | None:
        return _check_profile(value)

    @field_validator("interpolation")
    @classmethod
    def _validate_interpolation(cls, value: str) -> str:
        if value not in INTERPOLATION_METHODS:
            raise ValueError(
                ErrorMessages.INVALID_INTERPOLATION.format(value, ", ".join(INTERPOLATION_METHODS))
            )
        return value

    @field_validator("encoding")
    @classmethod
    def _validate_encoding(cls, value: str) -> str:
        if value not in ENCODINGS:
            raise ValueError(ErrorMessages.INVALID_ENCODING.format(value, ", ".join(ENCODINGS)))
        return value


class CompositorConfig(BaseModel):
    """Map profile plus the ordered layer list (lowest priority first)."""

    model_config = ConfigDict(extra="forbid")

    profile: str = Field(DEFAULT_PROFILE, description="Map tiling profile")
    geoid_path: str | None = Field(
        None, description="Geodetic GeoTIFF of geoid heights used to fill no-data"
    )
    layers: list[LayerConfig] = Field(default_factory=list, description="Configured layers")

    @field_validator("profile")
    @classmethod
    def _validate_profile(cls, value: str) -> str:
        _check_profile(value)
        return value

    @field_validator("layers")
    @classmethod
    def _validate_unique_names(cls, value: list[LayerConfig]) -> list[LayerConfig]:
        seen: set[str] = set()
        for layer in value:
            if layer.name in seen:
                raise ValueError(ErrorMessages.DUPLICATE_LAYER.format(layer.name))
            seen.add(layer.name)
        return value


def load_config(path: str | Path) -> CompositorConfig:
    """Read and validate a compositor configuration file."""
    return CompositorConfig.model_validate_json(Path(path).read_text())
