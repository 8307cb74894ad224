"""
chuk-mcp-tiles: On-demand Imagery & Elevation Tile Compositing MCP Server

Composites imagery and elevation tiles from prioritized raster layers,
reprojecting sources whose tiling scheme differs from the map profile.
Fills elevation holes from a geoid model and stores results in
chuk-artifacts for downstream use.
"""
