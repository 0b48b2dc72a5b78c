"""
Room Mask Compositor
====================
Puts the projected floor underneath a room photograph.

Key Features:
- Floor classification from a darkness threshold or a keyed mask image
- One-pixel mask erosion to hide mask edge fringes
- Foreground layer: the room photo with floor pixels made transparent
- Fixed layer order: floor, shadow (multiply), foreground (normal)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from scipy import ndimage

from .asset_cache import AssetCache, load_image
from .config import resolve_asset_path
from .errors import AssetLoadError, PixelReadbackError


@dataclass
class FloorRule:
    """How floor pixels are recognised in a room asset"""
    type: str = 'threshold'
    threshold: float = 40.0
    channel_rule: str = 'all'
    key: Union[str, Tuple[int, int, int]] = (255, 0, 255)
    tolerance: Tuple[int, int, int] = (15, 10, 15)
    erode: Optional[int] = None

    @classmethod
    def from_config(cls, rule_config: Dict) -> 'FloorRule':
        rule = cls(**rule_config)
        if not isinstance(rule.key, str):
            rule.key = tuple(int(v) for v in rule.key)
        rule.tolerance = tuple(int(v) for v in rule.tolerance)
        if rule.type not in ('threshold', 'mask'):
            raise ValueError(f"Unknown floor rule type '{rule.type}'")
        return rule

    @property
    def erode_iterations(self) -> int:
        if self.erode is not None:
            return int(self.erode)
        return 1 if self.type == 'mask' else 0


@dataclass(eq=False)
class RoomAsset:
    """Base photo at canvas size plus its floor rule and optional layers"""
    name: str
    base: np.ndarray
    rule: FloorRule = field(default_factory=FloorRule)
    mask: Optional[np.ndarray] = None
    shadow: Optional[np.ndarray] = None
    shadow_intensity: float = 1.0
    warnings: List[str] = field(default_factory=list)

    @property
    def width(self) -> int:
        return int(self.base.shape[1])

    @property
    def height(self) -> int:
        return int(self.base.shape[0])

    @property
    def key(self) -> Tuple[str, int, int]:
        return (self.name, self.width, self.height)


def _to_bgra(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
    return image.copy()


def _fit(image: np.ndarray, size: Tuple[int, int], nearest: bool = False) -> np.ndarray:
    width, height = size
    if image.shape[1] == width and image.shape[0] == height:
        return image
    interpolation = cv2.INTER_NEAREST if nearest else cv2.INTER_LINEAR
    return cv2.resize(image, (width, height), interpolation=interpolation)


async def load_room_asset(name: str,
                          room_config: Dict,
                          canvas_size: Tuple[int, int],
                          base_dir: Optional[str] = None,
                          cache: Optional[AssetCache] = None) -> RoomAsset:
    """
    Load a room's images and fit them to the canvas

    Mask and shadow are optional: when they fail to load the room keeps a
    warning and composites without them.

    Raises:
        AssetLoadError: if the base photo cannot be loaded
    """
    base = await load_image(resolve_asset_path(room_config['base_image'], base_dir), cache)
    room = RoomAsset(
        name=name,
        base=_fit(base, canvas_size),
        rule=FloorRule.from_config(room_config.get('floor_rule', {})),
        shadow_intensity=float(room_config.get('shadow_intensity', 1.0)),
    )

    for attr, key, nearest in (('mask', 'mask_image', True), ('shadow', 'shadow_image', False)):
        path = room_config.get(key)
        if not path:
            continue
        try:
            image = await load_image(resolve_asset_path(path, base_dir), cache)
        except AssetLoadError as e:
            print(f"⚠️ {e}")
            room.warnings.append(str(e))
            continue
        setattr(room, attr, _fit(image, canvas_size, nearest=nearest))

    print(f"🏠 Room '{name}' ready: {room.width}x{room.height}, rule={room.rule.type}")
    return room


class RoomMaskCompositor:
    """
    Floor classification, foreground extraction and layer compositing
    """

    def __init__(self):
        self._floor_cache: Dict[Tuple, np.ndarray] = {}
        self._foreground_cache: Dict[Tuple, np.ndarray] = {}

    def invalidate(self, room_key: Optional[Tuple] = None):
        if room_key is None:
            self._floor_cache.clear()
            self._foreground_cache.clear()
        else:
            self._floor_cache.pop(room_key, None)
            self._foreground_cache.pop(room_key, None)

    @staticmethod
    def erode_mask(mask: np.ndarray, iterations: int = 1) -> np.ndarray:
        """
        Erode a boolean mask with a 3x3 square

        A pixel survives only when its whole 3x3 neighbourhood is set; pixels
        on the image border never survive.
        """
        if iterations <= 0:
            return mask.astype(bool)
        eroded = ndimage.binary_erosion(
            mask.astype(bool),
            structure=np.ones((3, 3), dtype=bool),
            iterations=iterations,
            border_value=0
        )
        print(f"   ↔️ Eroded mask by {iterations} iterations")
        return eroded

    @staticmethod
    def floor_coverage(mask: np.ndarray) -> float:
        """Percentage of pixels classified as floor."""
        if mask.size == 0:
            return 0.0
        return float(np.count_nonzero(mask)) / mask.size * 100.0

    @staticmethod
    def _threshold_floor(base: np.ndarray, rule: FloorRule) -> np.ndarray:
        channels = base[:, :, :3] if base.ndim == 3 else base[:, :, None]
        if rule.channel_rule == 'mean':
            return channels.mean(axis=2) < rule.threshold
        return np.all(channels < rule.threshold, axis=2)

    @staticmethod
    def _keyed_floor(mask_image: np.ndarray, rule: FloorRule) -> np.ndarray:
        if mask_image.ndim == 2:
            mask_image = mask_image[:, :, None].repeat(3, axis=2)
        bgr = mask_image[:, :, :3].astype(np.int16)
        if rule.key == 'luminance':
            return bgr.mean(axis=2) > rule.threshold
        key_bgr = np.array(rule.key[::-1], dtype=np.int16)
        tolerance_bgr = np.array(rule.tolerance[::-1], dtype=np.int16)
        return np.all(np.abs(bgr - key_bgr) < tolerance_bgr, axis=2)

    def classify_floor(self, room: RoomAsset) -> np.ndarray:
        """
        Boolean floor mask of the room (True = floor), cached per room

        Raises:
            PixelReadbackError: if the mask rule has no usable mask image
        """
        cached = self._floor_cache.get(room.key)
        if cached is not None:
            return cached

        rule = room.rule
        if rule.type == 'threshold':
            floor = self._threshold_floor(room.base, rule)
        else:
            if room.mask is None:
                raise PixelReadbackError(f"Room '{room.name}' has no readable floor mask")
            if room.mask.shape[:2] != room.base.shape[:2]:
                raise PixelReadbackError(
                    f"Mask size {room.mask.shape[1]}x{room.mask.shape[0]} does not match "
                    f"base photo {room.width}x{room.height}"
                )
            floor = self._keyed_floor(room.mask, rule)

        floor = self.erode_mask(floor, rule.erode_iterations)
        print(f"   ✓ Floor classified: {self.floor_coverage(floor):.1f}% of the photo")
        self._floor_cache[room.key] = floor
        return floor

    def build_foreground_layer(self, room: RoomAsset) -> np.ndarray:
        """
        Room photo (BGRA) with floor pixels fully transparent, cached per room

        Raises:
            PixelReadbackError: propagated from classify_floor
        """
        cached = self._foreground_cache.get(room.key)
        if cached is not None:
            return cached

        foreground = _to_bgra(room.base)
        foreground[self.classify_floor(room), 3] = 0
        self._foreground_cache[room.key] = foreground
        return foreground

    @staticmethod
    def unprocessed_foreground(room: RoomAsset) -> np.ndarray:
        """The photo drawn as-is, used when the floor mask cannot be read."""
        return _to_bgra(room.base)

    @staticmethod
    def _blend(backdrop: np.ndarray, source: np.ndarray, opacity: float, mode: str) -> np.ndarray:
        """Composite float BGRA source onto backdrop (non-premultiplied, 0..1)."""
        cb, ab = backdrop[:, :, :3], backdrop[:, :, 3:4]
        cs, a_s = source[:, :, :3], source[:, :, 3:4] * opacity

        mixed = cb * cs if mode == 'multiply' else cs
        # Source color where the backdrop is empty, blended color where it is opaque
        cs_eff = (1.0 - ab) * cs + ab * mixed

        alpha = a_s + ab * (1.0 - a_s)
        premultiplied = a_s * cs_eff + (1.0 - a_s) * ab * cb
        color = np.divide(premultiplied, alpha, out=np.zeros_like(premultiplied), where=alpha > 0)
        return np.concatenate([color, alpha], axis=2)

    @classmethod
    def composite(cls,
                  floor_render: np.ndarray,
                  shadow_layer: Optional[np.ndarray],
                  foreground_layer: Optional[np.ndarray],
                  shadow_intensity: float = 1.0) -> np.ndarray:
        """
        Stack the layers: floor, then shadow (multiply), then foreground (normal)

        Args:
            floor_render: Projected floor (BGRA)
            shadow_layer: Optional shadow image (BGR/BGRA, white = no shadow)
            foreground_layer: Optional foreground (BGRA, transparent floor)
            shadow_intensity: Shadow opacity in [0, 1]

        Returns:
            Composite BGRA image (uint8)
        """
        layers: Sequence = [layer for layer in (shadow_layer, foreground_layer) if layer is not None]
        for layer in layers:
            if layer.shape[:2] != floor_render.shape[:2]:
                raise ValueError(
                    f"Layer size {layer.shape[1]}x{layer.shape[0]} does not match "
                    f"floor {floor_render.shape[1]}x{floor_render.shape[0]}"
                )

        result = _to_bgra(floor_render).astype(np.float64) / 255.0
        intensity = float(np.clip(shadow_intensity, 0.0, 1.0))
        if shadow_layer is not None and intensity > 0:
            shadow = _to_bgra(shadow_layer).astype(np.float64) / 255.0
            result = cls._blend(result, shadow, intensity, 'multiply')
        if foreground_layer is not None:
            foreground = _to_bgra(foreground_layer).astype(np.float64) / 255.0
            result = cls._blend(result, foreground, 1.0, 'normal')

        return np.round(np.clip(result, 0.0, 1.0) * 255.0).astype(np.uint8)
