from abc import ABC, abstractmethod

import numpy as np

from ..errors import UnsupportedSurfaceError


class BaseProjector(ABC):
    @abstractmethod
    def project(self, texture, target):
        """Project the texture into the target canvas and return a BGRA bitmap."""
        pass

    def dispose(self):
        """Release resources held between projections."""
        pass


def check_canvas_size(width, height):
    """Validate a destination canvas size. Zero area is allowed (empty result)."""
    try:
        valid = int(width) == width and int(height) == height and width >= 0 and height >= 0
    except (TypeError, ValueError):
        valid = False
    if not valid:
        raise UnsupportedSurfaceError(f"Cannot create a {width}x{height} drawing surface")
    return int(width), int(height)


def empty_canvas(width, height):
    """Fully transparent BGRA canvas."""
    return np.zeros((max(int(height), 0), max(int(width), 0), 4), dtype=np.uint8)


def ensure_bgra(image):
    if image.ndim == 2:
        image = np.dstack([image, image, image])
    if image.shape[2] == 4:
        return image
    alpha = np.full(image.shape[:2] + (1,), 255, dtype=image.dtype)
    return np.concatenate([image[:, :, :3], alpha], axis=2)
