"""
Constants for chuk-mcp-tiles server.

All magic strings, tiling defaults, and configuration values live here.
"""

from enum import Enum

import numpy as np


class ServerConfig:
    NAME = "chuk-mcp-tiles"
    VERSION = "0.1.0"
    DESCRIPTION = "On-demand Imagery & Elevation Tile Compositing MCP Server"


class StorageProvider:
    MEMORY = "memory"
    S3 = "s3"
    FILESYSTEM = "filesystem"


class SessionProvider:
    MEMORY = "memory"
    REDIS = "redis"


class EnvVar:
    ARTIFACTS_PROVIDER = "CHUK_ARTIFACTS_PROVIDER"
    BUCKET_NAME = "BUCKET_NAME"
    REDIS_URL = "REDIS_URL"
    ARTIFACTS_PATH = "CHUK_ARTIFACTS_PATH"
    AWS_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
    AWS_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
    AWS_ENDPOINT_URL_S3 = "AWS_ENDPOINT_URL_S3"
    MCP_STDIO = "MCP_STDIO"
    TILES_CONFIG = "CHUK_TILES_CONFIG"


class RasterKind(str, Enum):
    """Kind of raster a layer produces."""

    IMAGE = "image"
    ELEVATION = "elevation"


class ProfileName:
    GLOBAL_GEODETIC = "global-geodetic"
    SPHERICAL_MERCATOR = "spherical-mercator"


ALL_PROFILE_NAMES = [ProfileName.GLOBAL_GEODETIC, ProfileName.SPHERICAL_MERCATOR]
DEFAULT_PROFILE = ProfileName.GLOBAL_GEODETIC


class Encoding:
    SINGLE_CHANNEL = "single_channel"
    MAPBOX_RGB = "mapboxrgb"


ENCODINGS = [Encoding.SINGLE_CHANNEL, Encoding.MAPBOX_RGB]

# No-data sentinel for heightfields (-FLT_MAX)
NO_DATA_VALUE = float(-np.finfo(np.float32).max)

# Interpolation methods
INTERPOLATION_METHODS = ["nearest", "bilinear"]
DEFAULT_INTERPOLATION = "bilinear"

# Tile defaults
DEFAULT_IMAGE_TILE_SIZE = 256
DEFAULT_ELEVATION_TILE_SIZE = 257
MAX_HEIGHTFIELD_DIMENSION = 1024
MAX_TILE_LEVEL = 30

# Maximum number of rasters held by one populate call
LOCAL_RASTER_CACHE_MAX = 50

# Mapbox Terrain-RGB decoding
MAPBOX_RGB_MIN_HEIGHT = -9999.0
MAPBOX_RGB_MAX_HEIGHT = 999999.0

# Geometry
METERS_PER_DEGREE = 111319.49079327357
SNAP_EPSILON = 1e-9

OUTPUT_FORMATS = ["geotiff", "png"]
TOOL_NAMES = [
    "tiles_list_layers",
    "tiles_status",
    "tiles_capabilities",
    "tiles_open_layer",
    "tiles_close_layer",
    "tiles_heightfield",
    "tiles_image",
]

# Retry
RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10


class ErrorMessages:
    INVALID_EXTENT = "Invalid extent: min ({}, {}) must not exceed max ({}, {})"
    UNKNOWN_PROFILE = "Unknown profile '{}'. Available: {}"
    UNKNOWN_LAYER = "Unknown layer '{}'. Available: {}"
    DUPLICATE_LAYER = "A layer named '{}' already exists"
    NOT_AN_IMAGE_LAYER = "Layer '{}' is not an image layer"
    INVALID_TILE_KEY = "Invalid tile key {}/{}/{} for profile {}"
    INVALID_TILE_SIZE = "tile_size must be between 2 and {}, got {}"
    INVALID_INTERPOLATION = "Invalid interpolation '{}'. Available: {}"
    INVALID_OUTPUT_FORMAT = "Invalid output format '{}'. Available: {}"
    INVALID_ENCODING = "Invalid encoding '{}'. Available: {}"
    LAYER_NOT_OPEN = "Layer not open or initialized"
    LAYER_CLOSED = "Layer closed"
    LAYER_DISABLED = "Layer disabled"
    ILLEGAL_HEIGHTFIELD = "Generated an illegal heightfield"
    NO_DATA_IN_TILE = "No data in tile {}"
    SOURCE_FAILED = "Source failed for tile {}: {}"
    SOURCE_OPEN_FAILED = "Failed to open raster source '{}': {}"
    SOURCE_NOT_OPEN = "Raster source '{}' is not open"
    NO_ARTIFACT_STORE = (
        "No artifact store available. Configure CHUK_ARTIFACTS_PROVIDER "
        "environment variable (memory, filesystem, or s3)."
    )
    NO_TILE_DATA = "No data available for tile {}"


class SuccessMessages:
    LAYERS_LIST = "{} layers configured ({} open)"
    LAYER_OPENED = "Layer '{}' opened"
    LAYER_CLOSED = "Layer '{}' closed"
    STATUS = "Tiles MCP Server v{} ({} layers, storage: {})"
    HEIGHTFIELD_COMPLETE = "Heightfield {} assembled ({}x{}, real data: {})"
    IMAGE_COMPLETE = "Image {} assembled ({}x{})"
