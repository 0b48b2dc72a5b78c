# src/tile_simulator/__init__.py
# Pattern recoloring + seamless tiling + perspective floor compositing

__version__ = '0.1.0'

# Pattern and texture synthesis
from .asset_cache import AssetCache
from .vector_shape_registry import PatternDocument, RegionColorMap, VectorShapeRegistry
from .texture_tiling_engine import Texture, TextureTilingEngine

# Projection and compositing
from .projection import (LightingControls, Quad, QuadStripWarpProjector, ResourceTracker,
                         ScenePerspectiveProjector, SceneParams)
from .room_mask_compositor import RoomAsset, RoomMaskCompositor

# Pipeline
from .catalog import Catalog
from .headless_pipeline import CancellationToken, HeadlessPipeline, RenderParams
from .errors import (AssetLoadError, PatternParseError, PixelReadbackError, RenderCancelled,
                     TileSimulatorError, UnsupportedSurfaceError)

__all__ = [
    # Pattern and texture synthesis
    'AssetCache',
    'PatternDocument',
    'RegionColorMap',
    'VectorShapeRegistry',
    'Texture',
    'TextureTilingEngine',
    # Projection and compositing
    'LightingControls',
    'Quad',
    'QuadStripWarpProjector',
    'ResourceTracker',
    'ScenePerspectiveProjector',
    'SceneParams',
    'RoomAsset',
    'RoomMaskCompositor',
    # Pipeline
    'Catalog',
    'CancellationToken',
    'HeadlessPipeline',
    'RenderParams',
    'TileSimulatorError',
    'AssetLoadError',
    'PatternParseError',
    'UnsupportedSurfaceError',
    'PixelReadbackError',
    'RenderCancelled'
]
