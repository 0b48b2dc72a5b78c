"""
Quad Strip Warp
===============
Approximate perspective: draws a flat texture into an arbitrary
quadrilateral by slicing it into thin horizontal strips, each drawn through
its own affine transform.

Key Features:
- Quads from absolute points or canvas-relative fractions
- Quad rotation around a pivot (per-room calibration)
- Piecewise-affine warp, clipped to the quad polygon
- Tolerates non-convex quads and quads extending past the canvas
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import cv2
import numpy as np

from .. import svg_geometry
from ..texture_tiling_engine import Texture
from .base_projector import BaseProjector, check_canvas_size, empty_canvas, ensure_bgra

Point = Tuple[float, float]


@dataclass(frozen=True)
class Quad:
    """Destination quadrilateral: p1 top-left, p2 top-right, p3 bottom-right, p4 bottom-left"""
    p1: Point
    p2: Point
    p3: Point
    p4: Point

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> 'Quad':
        if len(points) != 4:
            raise ValueError(f"A quad needs 4 points, got {len(points)}")
        return cls(*(tuple(float(v) for v in p) for p in points))

    @classmethod
    def from_fractions(cls, fractions: Sequence[Sequence[float]], width: float, height: float) -> 'Quad':
        """Build a quad from (fx, fy) fractions of the canvas size."""
        return cls.from_points([(fx * width, fy * height) for fx, fy in fractions])

    @classmethod
    def canvas(cls, width: float, height: float) -> 'Quad':
        return cls((0.0, 0.0), (float(width), 0.0), (float(width), float(height)), (0.0, float(height)))

    def points(self) -> np.ndarray:
        return np.array([self.p1, self.p2, self.p3, self.p4], dtype=np.float64)

    def center(self) -> Point:
        cx, cy = self.points().mean(axis=0)
        return float(cx), float(cy)

    def rotated(self, angle_deg: float, center: Point = None) -> 'Quad':
        """
        Rotate the quad around a pivot

        Positive angles are clockwise in y-up coordinates, which is
        counter-clockwise on screen.

        Args:
            angle_deg: Angle in degrees
            center: Pivot, defaults to the vertex centroid

        Returns:
            New quad
        """
        cx, cy = center if center is not None else self.center()
        theta = math.radians(angle_deg)
        cos_t, sin_t = math.cos(theta), math.sin(theta)
        rotated = []
        for x, y in (self.p1, self.p2, self.p3, self.p4):
            dx, dy = x - cx, y - cy
            rotated.append((cx + dx * cos_t + dy * sin_t, cy - dx * sin_t + dy * cos_t))
        return Quad(*rotated)

    def area(self) -> float:
        """Shoelace area (absolute)."""
        pts = self.points()
        x, y = pts[:, 0], pts[:, 1]
        return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


@dataclass(frozen=True)
class QuadTarget:
    """Destination canvas for the strip warp"""
    quad: Quad
    width: int
    height: int


class QuadStripWarpProjector(BaseProjector):
    """
    Piecewise-affine texture warp into a quadrilateral
    """

    def __init__(self, steps: int = 250, interpolation: int = cv2.INTER_LINEAR):
        """
        Initialize strip warp

        Args:
            steps: Number of horizontal strips the source is split into
            interpolation: OpenCV interpolation flag for each strip
        """
        if steps < 1:
            raise ValueError("steps must be >= 1")
        self.steps = int(steps)
        self.interpolation = interpolation

    @staticmethod
    def strip_transform(quad: Quad, source_size: Tuple[int, int], index: int, steps: int) -> np.ndarray:
        """
        Affine transform (2x3) mapping source strip `index` onto the quad

        Source x runs along the quad's top edge at that height, source y along
        its left edge, with the strip's first source row landing on the left
        edge point at t0 = index / steps.
        """
        src_w, src_h = source_size
        strip_h = src_h / steps
        p1, p2, p3, p4 = (np.asarray(p, dtype=np.float64) for p in (quad.p1, quad.p2, quad.p3, quad.p4))

        t0 = index / steps
        t1 = (index + 1) / steps
        top_left = p1 + (p4 - p1) * t0
        top_right = p2 + (p3 - p2) * t0
        bottom_left = p1 + (p4 - p1) * t1

        dx_top = (top_right - top_left) / src_w
        dx_left = (bottom_left - top_left) / strip_h
        sy0 = strip_h * index
        return np.array([
            [dx_top[0], dx_left[0], top_left[0] - dx_left[0] * sy0],
            [dx_top[1], dx_left[1], top_left[1] - dx_left[1] * sy0],
        ], dtype=np.float64)

    @staticmethod
    def strip_polygon(quad: Quad, index: int, steps: int) -> np.ndarray:
        """Slice of the quad between t0 and t1 (TL, TR, BR, BL)."""
        p1, p2, p3, p4 = (np.asarray(p, dtype=np.float64) for p in (quad.p1, quad.p2, quad.p3, quad.p4))
        t0 = index / steps
        t1 = (index + 1) / steps
        return np.array([
            p1 + (p4 - p1) * t0,
            p2 + (p3 - p2) * t0,
            p2 + (p3 - p2) * t1,
            p1 + (p4 - p1) * t1,
        ])

    def project(self, texture: Texture, target: QuadTarget) -> np.ndarray:
        """
        Warp the texture into the target quad

        Args:
            texture: Source texture (typically a pattern fill of canvas size)
            target: Quad and destination canvas size

        Returns:
            BGRA canvas; pixels outside the quad stay transparent
        """
        width, height = check_canvas_size(target.width, target.height)
        output = empty_canvas(width, height)
        if texture.is_empty or width == 0 or height == 0:
            return output

        source = ensure_bgra(texture.pixels)
        src_size = (texture.width, texture.height)
        quad = target.quad

        for index in range(self.steps):
            matrix = self.strip_transform(quad, src_size, index, self.steps)
            if abs(np.linalg.det(matrix[:, :2])) < 1e-12:
                continue

            polygon = self.strip_polygon(quad, index, self.steps)
            x0 = max(0, int(math.floor(polygon[:, 0].min())))
            y0 = max(0, int(math.floor(polygon[:, 1].min())))
            x1 = min(width, int(math.ceil(polygon[:, 0].max())) + 1)
            y1 = min(height, int(math.ceil(polygon[:, 1].max())) + 1)
            if x1 <= x0 or y1 <= y0:
                continue

            local = matrix.copy()
            local[:, 2] -= (x0, y0)
            warped = cv2.warpAffine(
                source, local, (x1 - x0, y1 - y0),
                flags=self.interpolation,
                borderMode=cv2.BORDER_WRAP
            )
            inside = svg_geometry.fill_mask([polygon - (x0, y0)], y1 - y0, x1 - x0)
            output[y0:y1, x0:x1][inside] = warped[inside]

        # Overlapping slices of a non-convex quad may spill outside it
        clip = svg_geometry.fill_mask([quad.points()], height, width)
        output[~clip] = 0
        return output
