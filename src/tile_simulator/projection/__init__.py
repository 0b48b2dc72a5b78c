"""
Perspective projection strategies
"""

from .base_projector import BaseProjector
from .quad_strip_warp import Quad, QuadStripWarpProjector, QuadTarget
from .scene import (CameraParams, DeviceTexture, LightingControls, LightParams, PlaneGeometry,
                    PlaneParams, ResourceTracker, Scene, SceneParams, TextureData)
from .scene_projection import ScenePerspectiveProjector, SceneTarget, render_scene

__all__ = [
    'BaseProjector',
    'Quad',
    'QuadTarget',
    'QuadStripWarpProjector',
    'CameraParams',
    'PlaneParams',
    'LightParams',
    'LightingControls',
    'SceneParams',
    'ResourceTracker',
    'DeviceTexture',
    'PlaneGeometry',
    'TextureData',
    'Scene',
    'ScenePerspectiveProjector',
    'SceneTarget',
    'render_scene',
]
