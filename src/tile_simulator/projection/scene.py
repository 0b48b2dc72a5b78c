"""
Scene model for the 3D projection strategy: camera, one textured ground
plane, three lights, tone mapping, and the device resources the renderer
keeps between frames.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple, Union

import numpy as np

from ..texture_tiling_engine import Texture
from .base_projector import ensure_bgra

Vec3 = Tuple[float, float, float]

CAMERA_TYPES = ('perspective', 'orthographic')


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    return np.where(values <= 0.04045, values / 12.92, ((values + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(values: np.ndarray) -> np.ndarray:
    values = np.clip(values, 0.0, 1.0)
    return np.where(values <= 0.0031308, values * 12.92, 1.055 * np.power(values, 1 / 2.4) - 0.055)


def euler_matrix(rotation_deg: Vec3) -> np.ndarray:
    """Rotation matrix for Euler angles in degrees, order X then Y then Z (R = Rx Ry Rz)."""
    ax, ay, az = (math.radians(a) for a in rotation_deg)
    cx, sx = math.cos(ax), math.sin(ax)
    cy, sy = math.cos(ay), math.sin(ay)
    cz, sz = math.cos(az), math.sin(az)
    rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rx @ ry @ rz


# ─── Parameters ───────────────────────────────────────────────────────────────

@dataclass
class CameraParams:
    type: str = 'perspective'
    position: Vec3 = (0.0, 500.0, 500.0)
    target: Vec3 = (0.0, 0.0, 0.0)
    up: Vec3 = (0.0, 1.0, 0.0)
    fov_deg: float = 45.0
    near: float = 0.1
    far: float = 2000.0
    view_height: float = 1000.0
    zoom: float = 1.0


@dataclass
class PlaneParams:
    width: float = 1000.0
    height: float = 1000.0
    rotation_deg: Vec3 = (-90.0, 0.0, 0.0)
    position: Vec3 = (0.0, 0.0, 0.0)
    tile_scale: Optional[float] = None
    texture_world_size: Optional[float] = None
    repeat: Optional[Tuple[float, float]] = None
    offset: Tuple[float, float] = (0.0, 0.0)
    roughness: float = 0.35
    metalness: float = 0.05
    color_scale: float = 1.0

    def texture_repeat(self) -> Tuple[float, float]:
        """
        UV repeat of the plane texture

        An explicit repeat wins; texture_world_size keeps each texture copy at
        a fixed size in world units; tile_scale is the fraction of the plane
        one copy covers.
        """
        if self.repeat is not None:
            return float(self.repeat[0]), float(self.repeat[1])
        if self.texture_world_size:
            return self.width / self.texture_world_size, self.height / self.texture_world_size
        if self.tile_scale:
            return 1.0 / self.tile_scale, 1.0 / self.tile_scale
        return 1.0, 1.0


@dataclass
class LightParams:
    ambient: float = 0.4
    hemisphere: float = 0.7
    hemisphere_sky: Vec3 = (1.0, 1.0, 1.0)
    hemisphere_ground: Vec3 = (0x44 / 255.0, 0x44 / 255.0, 0x44 / 255.0)
    hemisphere_position: Vec3 = (0.0, 200.0, 0.0)
    directional: float = 1.4
    directional_position: Vec3 = (300.0, 600.0, 300.0)


@dataclass
class LightingControls:
    """User-facing light sliders layered over the room's base lights"""
    exposure: float = 1.2
    brightness: float = 1.0
    contrast: float = 1.0
    saturation: float = 1.0
    gamma: float = 1.0


@dataclass
class SceneParams:
    camera: CameraParams = field(default_factory=CameraParams)
    plane: PlaneParams = field(default_factory=PlaneParams)
    lights: LightParams = field(default_factory=LightParams)
    exposure: float = 1.0
    clear_color: Tuple[int, int, int, int] = (255, 255, 255, 255)
    controls: Optional[LightingControls] = None
    no_reflections: bool = False

    @classmethod
    def from_config(cls, scene_config: Dict, **overrides) -> 'SceneParams':
        """Build scene parameters from a room's `scene` config section."""
        def _vec(values):
            return tuple(float(v) for v in values)

        camera_cfg = dict(scene_config.get('camera', {}))
        plane_cfg = dict(scene_config.get('plane', {}))
        lights_cfg = dict(scene_config.get('lights', {}))
        for cfg, keys in ((camera_cfg, ('position', 'target', 'up')),
                          (plane_cfg, ('rotation_deg', 'position', 'offset', 'repeat')),
                          (lights_cfg, ('hemisphere_sky', 'hemisphere_ground',
                                        'hemisphere_position', 'directional_position'))):
            for key in keys:
                if cfg.get(key) is not None:
                    cfg[key] = _vec(cfg[key])

        params = cls(
            camera=CameraParams(**camera_cfg),
            plane=PlaneParams(**plane_cfg),
            lights=LightParams(**lights_cfg),
            exposure=float(scene_config.get('exposure', 1.0)),
        )
        if 'clear_color' in scene_config:
            params.clear_color = tuple(scene_config['clear_color'])
        return replace(params, **overrides) if overrides else params


@dataclass(frozen=True)
class ShadingInputs:
    """Effective light intensities and material after controls are applied"""
    ambient: float
    hemisphere: float
    directional: float
    exposure: float
    saturation: float
    roughness: float
    metalness: float


def effective_shading(params: SceneParams) -> ShadingInputs:
    """
    Fold lighting controls and the no-reflections switch into the base lights

    Brightness scales every light, contrast scales the directional key light,
    gamma multiplies the exposure and saturation scales the albedo.
    """
    lights, plane = params.lights, params.plane
    controls = params.controls
    if controls is None:
        ambient, hemisphere, directional = lights.ambient, lights.hemisphere, lights.directional
        exposure, saturation = params.exposure, 1.0
    else:
        ambient = lights.ambient * controls.brightness
        hemisphere = lights.hemisphere * controls.brightness
        directional = lights.directional * controls.brightness * controls.contrast
        exposure = controls.exposure * controls.gamma
        saturation = controls.saturation

    roughness, metalness = plane.roughness, plane.metalness
    if params.no_reflections:
        directional, roughness, metalness = 0.0, 1.0, 0.0
    return ShadingInputs(ambient, hemisphere, directional, exposure, saturation,
                         float(roughness), float(metalness))


# ─── Device resources ─────────────────────────────────────────────────────────

class ResourceTracker:
    """Counts live device handles so leaks are observable"""

    def __init__(self):
        self.live: Dict[str, int] = {}
        self.allocated = 0
        self.released = 0

    def acquire(self, kind: str):
        self.live[kind] = self.live.get(kind, 0) + 1
        self.allocated += 1

    def release(self, kind: str):
        self.live[kind] = self.live.get(kind, 0) - 1
        self.released += 1

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return sum(self.live.values())
        return self.live.get(kind, 0)


class DeviceResource:
    kind = 'resource'

    def __init__(self, tracker: ResourceTracker):
        self.tracker = tracker
        self.disposed = False
        tracker.acquire(self.kind)

    def dispose(self):
        if not self.disposed:
            self.disposed = True
            self.tracker.release(self.kind)


@dataclass(frozen=True)
class TextureData:
    """Shading-ready copy of a texture: linear-light BGR plus alpha, float32"""
    color: np.ndarray
    alpha: np.ndarray
    fingerprint: str

    @classmethod
    def from_texture(cls, texture: Texture) -> 'TextureData':
        pixels = ensure_bgra(texture.pixels).astype(np.float32) / 255.0
        color = srgb_to_linear(pixels[:, :, :3]).astype(np.float32)
        return cls(color=color, alpha=pixels[:, :, 3], fingerprint=texture.fingerprint())


class DeviceTexture(DeviceResource):
    kind = 'texture'

    def __init__(self, data: TextureData, tracker: ResourceTracker):
        super().__init__(tracker)
        self.color = data.color
        self.alpha = data.alpha
        self.fingerprint = data.fingerprint
        self.height, self.width = data.color.shape[:2]


class PlaneGeometry(DeviceResource):
    kind = 'geometry'

    def __init__(self, width: float, height: float, tracker: ResourceTracker):
        super().__init__(tracker)
        self.width = float(width)
        self.height = float(height)


class Scene:
    """
    Persistent scene: parameters plus the plane's device resources
    """

    def __init__(self, tracker: Optional[ResourceTracker] = None, params: Optional[SceneParams] = None):
        self.tracker = tracker or ResourceTracker()
        self.params = params or SceneParams()
        self.texture: Optional[DeviceTexture] = None
        self.geometry: Optional[PlaneGeometry] = None

    def configure(self, params: SceneParams):
        """Apply new parameters, rebuilding the plane geometry when its size changed."""
        self.params = params
        plane = params.plane
        if self.geometry is None or (self.geometry.width, self.geometry.height) != (plane.width, plane.height):
            geometry = PlaneGeometry(plane.width, plane.height, self.tracker)
            previous, self.geometry = self.geometry, geometry
            if previous is not None:
                previous.dispose()

    def upload(self, texture: Union[Texture, TextureData]) -> DeviceTexture:
        if isinstance(texture, Texture):
            texture = TextureData.from_texture(texture)
        return DeviceTexture(texture, self.tracker)

    def attach_texture(self, device_texture: DeviceTexture):
        """Make device_texture the plane's texture, releasing the previous one."""
        previous, self.texture = self.texture, device_texture
        if previous is not None and previous is not device_texture:
            previous.dispose()

    def detach_texture(self):
        if self.texture is not None:
            self.texture.dispose()
            self.texture = None

    def dispose(self):
        self.detach_texture()
        if self.geometry is not None:
            self.geometry.dispose()
            self.geometry = None
