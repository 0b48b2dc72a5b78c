"""
Texture Tiling Engine
=====================
Builds the repeating floor texture from a recolored pattern document.

Key Features:
- Rasterize a single tile at a fixed resolution
- Rotate the tile as a whole (exact for multiples of 90 degrees)
- Replicate one tile bitmap on an N x N grid (seamless by construction)
- Fill arbitrary canvases with the texture at a given scale
"""

import hashlib
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import cv2
import numpy as np

from .vector_shape_registry import Color, PatternDocument, VectorShapeRegistry


@dataclass(eq=False)
class Texture:
    """BGRA pixel buffer holding repeat_factor x repeat_factor copies of one tile"""
    pixels: np.ndarray
    repeat_factor: int = 1

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 2 else 0

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def fingerprint(self) -> str:
        """Content hash, used to skip re-uploading an identical texture."""
        digest = hashlib.sha1(self.pixels.tobytes())
        digest.update(repr((self.pixels.shape, self.repeat_factor)).encode())
        return digest.hexdigest()


def is_right_angle(rotation_deg: float) -> bool:
    return float(rotation_deg) % 90 == 0


class TextureTilingEngine:
    """
    Engine for turning a pattern document into a seamless texture
    """

    def __init__(self,
                 registry: Optional[VectorShapeRegistry] = None,
                 tile_resolution: int = 512,
                 background: Tuple[int, int, int, int] = (255, 255, 255, 255)):
        """
        Initialize tiling engine

        Args:
            registry: Registry used to rasterize documents
            tile_resolution: Side of one rasterized tile in pixels
            background: BGRA fill behind the pattern shapes
        """
        if tile_resolution < 1:
            raise ValueError("tile_resolution must be >= 1")
        self.registry = registry or VectorShapeRegistry()
        self.tile_resolution = int(tile_resolution)
        self.background = tuple(background)

    @staticmethod
    def rotate_tile(tile: np.ndarray, rotation_deg: float, seamless: bool = True) -> np.ndarray:
        """
        Rotate a tile clockwise about its center

        Args:
            tile: Tile bitmap
            rotation_deg: Clockwise angle in degrees
            seamless: Require a rotation that keeps the tile repeatable

        Returns:
            Rotated tile (same size)

        Raises:
            ValueError: for angles other than multiples of 90 when seamless is set
        """
        if is_right_angle(rotation_deg):
            quarter_turns = int(round(float(rotation_deg) / 90.0)) % 4
            # np.rot90 turns counter-clockwise for positive k
            return np.ascontiguousarray(np.rot90(tile, k=-quarter_turns))

        if seamless:
            raise ValueError(
                f"Rotation {rotation_deg} breaks tile seams; use a multiple of 90 "
                "or seamless=False for an isolated preview"
            )

        h, w = tile.shape[:2]
        # OpenCV treats positive angles as counter-clockwise
        matrix = cv2.getRotationMatrix2D((w / 2.0, h / 2.0), -float(rotation_deg), 1.0)
        return cv2.warpAffine(
            tile, matrix, (w, h),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0)
        )

    def build_tile(self,
                   document: PatternDocument,
                   colors: Mapping,
                   rotation_deg: float = 0.0,
                   default_color: Optional[Color] = None,
                   seamless: bool = True) -> np.ndarray:
        """
        Rasterize one recolored tile

        Args:
            document: Pattern document
            colors: Region id -> color
            rotation_deg: Clockwise rotation applied to the whole tile
            default_color: Fill for regions without a color
            seamless: Restrict rotation to multiples of 90 degrees

        Returns:
            Tile bitmap (BGRA, tile_resolution x tile_resolution)
        """
        tile = self.registry.rasterize(
            document, colors, self.tile_resolution,
            default=default_color, background=self.background
        )
        return self.rotate_tile(tile, rotation_deg, seamless=seamless)

    @staticmethod
    def build_mosaic(tile: np.ndarray, repeat_factor: int = 4) -> Texture:
        """
        Replicate one tile bitmap on a repeat_factor x repeat_factor grid

        Every cell is a copy of the same bitmap, so adjacent edges match
        pixel for pixel.

        Raises:
            ValueError: if repeat_factor < 1
        """
        if int(repeat_factor) != repeat_factor or repeat_factor < 1:
            raise ValueError(f"repeat_factor must be an integer >= 1, got {repeat_factor}")
        repeat_factor = int(repeat_factor)

        print(f"🔲 Generating {repeat_factor}x{repeat_factor} tile mosaic...")
        reps = (repeat_factor, repeat_factor) + (1,) * (tile.ndim - 2)
        mosaic = np.tile(tile, reps)
        print(f"   ✓ Mosaic generated: {mosaic.shape[1]}x{mosaic.shape[0]}")
        return Texture(pixels=mosaic, repeat_factor=repeat_factor)

    def build_texture(self,
                      document: PatternDocument,
                      colors: Mapping,
                      rotation_deg: float = 0.0,
                      repeat_factor: int = 4,
                      default_color: Optional[Color] = None) -> Texture:
        """Rasterize, rotate and replicate in one step."""
        tile = self.build_tile(document, colors, rotation_deg, default_color, seamless=True)
        return self.build_mosaic(tile, repeat_factor)

    @staticmethod
    def fill_pattern(texture: Texture, width: int, height: int, scale: float = 1.0) -> np.ndarray:
        """
        Fill a width x height canvas with the texture repeated at a scale

        Args:
            texture: Source texture
            width: Canvas width
            height: Canvas height
            scale: Texture scale (smaller = more repetitions)

        Returns:
            BGRA canvas; transparent when the texture or canvas is empty
        """
        channels = texture.pixels.shape[2] if texture.pixels.ndim == 3 else 4
        if texture.is_empty or width <= 0 or height <= 0 or scale <= 0:
            return np.zeros((max(height, 0), max(width, 0), channels), dtype=np.uint8)

        tile_w = max(1, int(round(texture.width * scale)))
        tile_h = max(1, int(round(texture.height * scale)))
        if (tile_w, tile_h) == (texture.width, texture.height):
            scaled = texture.pixels
        else:
            interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR
            scaled = cv2.resize(texture.pixels, (tile_w, tile_h), interpolation=interpolation)

        reps_y = -(-height // tile_h)
        reps_x = -(-width // tile_w)
        reps = (reps_y, reps_x) + (1,) * (scaled.ndim - 2)
        return np.ascontiguousarray(np.tile(scaled, reps)[:height, :width])
