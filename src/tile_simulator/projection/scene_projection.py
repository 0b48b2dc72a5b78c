"""
Scene Perspective Projection
============================
Software renderer for the 3D strategy: casts one ray per destination pixel
against the textured ground plane and shades the hit.

Key Features:
- Perspective and orthographic cameras
- Plane with Euler rotation, position and UV repeat/offset
- Ambient + hemisphere + directional lighting, Lambert diffuse and
  Blinn-Phong specular from roughness/metalness
- ACES filmic tone mapping with exposure, sRGB output
- Device texture reuse across frames, explicit disposal
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import numpy as np

from ..errors import UnsupportedSurfaceError
from ..texture_tiling_engine import Texture
from .base_projector import BaseProjector, check_canvas_size, empty_canvas
from .scene import (CAMERA_TYPES, CameraParams, DeviceTexture, ResourceTracker, Scene, SceneParams,
                    TextureData, effective_shading, euler_matrix, linear_to_srgb)

# ACES fitted transforms (sRGB/linear RGB in, RGB rows)
ACES_INPUT = np.array([
    [0.59719, 0.35458, 0.04823],
    [0.07600, 0.90834, 0.01566],
    [0.02840, 0.13383, 0.83777],
], dtype=np.float32)
ACES_OUTPUT = np.array([
    [1.60475, -0.53108, -0.07367],
    [-0.10208, 1.10813, -0.00605],
    [-0.00327, -0.07276, 1.07602],
], dtype=np.float32)


def aces_filmic(rgb: np.ndarray, exposure: float) -> np.ndarray:
    """ACES filmic tone curve on linear RGB (last axis), result in [0, 1]."""
    v = rgb * (exposure / 0.6)
    v = v @ ACES_INPUT.T
    a = v * (v + 0.0245786) - 0.000090537
    b = v * (0.983729 * v + 0.4329510) + 0.238081
    v = (a / b) @ ACES_OUTPUT.T
    return np.clip(v, 0.0, 1.0)


def _normalize(v: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(v, axis=-1, keepdims=True)
    return v / np.maximum(norm, 1e-12)


def camera_rays(camera: CameraParams, width: int, height: int):
    """
    One ray per pixel center

    Returns:
        (origins, directions, forward): origins and directions are H x W x 3
    """
    if camera.type not in CAMERA_TYPES:
        raise UnsupportedSurfaceError(f"Unknown camera type '{camera.type}'")

    position = np.asarray(camera.position, dtype=np.float64)
    forward = _normalize(np.asarray(camera.target, dtype=np.float64) - position)
    right = np.cross(forward, np.asarray(camera.up, dtype=np.float64))
    if np.linalg.norm(right) < 1e-12:
        raise UnsupportedSurfaceError("Camera up vector is parallel to the view direction")
    right = _normalize(right)
    up = np.cross(right, forward)

    ndc_x = (np.arange(width, dtype=np.float64) + 0.5) / width * 2.0 - 1.0
    ndc_y = 1.0 - (np.arange(height, dtype=np.float64) + 0.5) / height * 2.0
    ndc_x, ndc_y = np.meshgrid(ndc_x, ndc_y)
    aspect = width / height
    zoom = camera.zoom or 1.0

    if camera.type == 'perspective':
        half_h = math.tan(math.radians(camera.fov_deg) / 2.0) / zoom
        half_w = half_h * aspect
        directions = (forward
                      + ndc_x[..., None] * half_w * right
                      + ndc_y[..., None] * half_h * up)
        origins = np.broadcast_to(position, directions.shape)
    else:
        half_h = camera.view_height / 2.0 / zoom
        half_w = half_h * aspect
        origins = (position
                   + ndc_x[..., None] * half_w * right
                   + ndc_y[..., None] * half_h * up)
        directions = np.broadcast_to(forward, origins.shape)
    return origins, directions, forward


def shade(params: SceneParams, albedo_rgb: np.ndarray, directions: np.ndarray) -> np.ndarray:
    """Lit, tone-mapped linear RGB for every pixel."""
    lights = params.lights
    shading = effective_shading(params)

    normal = euler_matrix(params.plane.rotation_deg) @ np.array([0.0, 0.0, 1.0])
    view = _normalize(-directions)
    # Double-sided: light the face turned towards the camera
    facing = np.where((view @ normal) < 0, -1.0, 1.0)[..., None]
    normals = facing * normal

    albedo = albedo_rgb * params.plane.color_scale * shading.saturation
    diffuse = albedo * (1.0 - shading.metalness) / math.pi

    sky_dir = _normalize(np.asarray(lights.hemisphere_position, dtype=np.float64))
    weight = (0.5 * (normals @ sky_dir) + 0.5)[..., None]
    sky = np.asarray(lights.hemisphere_sky, dtype=np.float64)
    ground = np.asarray(lights.hemisphere_ground, dtype=np.float64)
    irradiance = shading.ambient + shading.hemisphere * (ground * (1.0 - weight) + sky * weight)
    color = diffuse * irradiance

    if shading.directional > 0:
        light_dir = _normalize(np.asarray(lights.directional_position, dtype=np.float64))
        n_dot_l = np.maximum(normals @ light_dir, 0.0)[..., None]
        color = color + diffuse * shading.directional * n_dot_l

        half_vec = _normalize(view + light_dir)
        n_dot_h = np.maximum(np.sum(normals * half_vec, axis=-1), 0.0)[..., None]
        alpha = max(shading.roughness, 0.05) ** 2
        shininess = 2.0 / (alpha * alpha) - 2.0
        f0 = 0.04 * (1.0 - shading.metalness) + albedo * shading.metalness
        specular = f0 * (shininess + 2.0) / (8.0 * math.pi) * np.power(n_dot_h, shininess)
        color = color + specular * shading.directional * n_dot_l

    return aces_filmic(color, shading.exposure)


def render_scene(params: SceneParams, device: Optional[DeviceTexture], width: int, height: int) -> np.ndarray:
    """
    Ray-cast the textured plane and return a BGRA frame

    Pixels that miss the plane keep the clear color.

    Raises:
        UnsupportedSurfaceError: for invalid canvas sizes or camera setups
    """
    width, height = check_canvas_size(width, height)
    if width == 0 or height == 0:
        return empty_canvas(width, height)

    output = np.empty((height, width, 4), dtype=np.uint8)
    output[:] = params.clear_color
    origins, directions, forward = camera_rays(params.camera, width, height)
    if device is None:
        return output

    camera, plane = params.camera, params.plane
    rotation = euler_matrix(plane.rotation_deg)
    # Row vectors: v @ R applies R^T, i.e. world -> plane-local
    local_origins = (origins - np.asarray(plane.position, dtype=np.float64)) @ rotation
    local_dirs = directions @ rotation

    dz = local_dirs[..., 2]
    hit = np.abs(dz) > 1e-12
    t = np.where(hit, -local_origins[..., 2] / np.where(hit, dz, 1.0), -1.0)
    depth = t * (directions @ forward)
    hit &= (depth >= camera.near) & (depth <= camera.far)

    lx = local_origins[..., 0] + t * local_dirs[..., 0]
    ly = local_origins[..., 1] + t * local_dirs[..., 1]
    hit &= (np.abs(lx) <= plane.width / 2.0) & (np.abs(ly) <= plane.height / 2.0)
    if not np.any(hit):
        return output

    repeat_x, repeat_y = plane.texture_repeat()
    s = (lx / plane.width + 0.5) * repeat_x + plane.offset[0]
    v = (ly / plane.height + 0.5) * repeat_y + plane.offset[1]
    # Texture row 0 is the top (v = 1)
    map_x = ((s - np.floor(s)) * device.width - 0.5).astype(np.float32)
    map_y = ((1.0 - (v - np.floor(v))) * device.height - 0.5).astype(np.float32)
    albedo = cv2.remap(device.color, map_x, map_y, cv2.INTER_LINEAR,
                       borderMode=cv2.BORDER_WRAP).astype(np.float64)

    shaded = shade(params, albedo[..., ::-1], directions)
    pixels = np.round(linear_to_srgb(shaded)[..., ::-1] * 255.0).astype(np.uint8)

    output[hit, :3] = pixels[hit]
    output[hit, 3] = 255
    return output


@dataclass(frozen=True)
class SceneTarget:
    """Destination canvas plus the scene parameters to render it with"""
    params: SceneParams
    width: int
    height: int


class ScenePerspectiveProjector(BaseProjector):
    """
    Renders the texture on a lit ground plane seen through the room camera
    """

    def __init__(self, tracker: Optional[ResourceTracker] = None):
        """
        Initialize projector

        Args:
            tracker: Resource tracker shared with the caller (one is created if omitted)
        """
        self.scene = Scene(tracker or ResourceTracker())

    @property
    def tracker(self) -> ResourceTracker:
        return self.scene.tracker

    def device_texture_for(self, texture: Union[Texture, TextureData]) -> DeviceTexture:
        """
        The attached device texture when its content matches, else a new
        unattached upload the caller must attach or dispose
        """
        fingerprint = texture.fingerprint if isinstance(texture, TextureData) else texture.fingerprint()
        current = self.scene.texture
        if current is not None and not current.disposed and current.fingerprint == fingerprint:
            return current
        return self.scene.upload(texture)

    def commit(self, params: SceneParams, device: DeviceTexture):
        """Make params and device the scene's current state (acquire-then-release)."""
        self.scene.configure(params)
        self.scene.attach_texture(device)

    def project(self, texture: Texture, target: SceneTarget) -> np.ndarray:
        """
        Render the textured plane into a canvas of the target size

        Raises:
            UnsupportedSurfaceError: for invalid canvas sizes or camera types
        """
        width, height = check_canvas_size(target.width, target.height)
        if texture.is_empty or width == 0 or height == 0:
            return empty_canvas(width, height)

        device = self.device_texture_for(texture)
        try:
            frame = render_scene(target.params, device, width, height)
        except Exception:
            if device is not self.scene.texture:
                device.dispose()
            raise
        self.commit(target.params, device)
        return frame

    def dispose(self):
        self.scene.dispose()
