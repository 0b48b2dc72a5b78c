import os
import sys

import cv2
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

CHECKER_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 100 100">
  <path id="cell-a" fill="#ffffff" d="M0,0 H50 V50 H0 Z M50,50 H100 V100 H50 Z"/>
  <path id="cell-b" fill="#000000" d="M50,0 H100 V50 H50 Z M0,50 H50 V100 H0 Z"/>
</svg>
"""

RED = (0, 0, 255, 255)
BLUE = (255, 0, 0, 255)


@pytest.fixture
def checker_path(tmp_path):
    path = tmp_path / 'checker.svg'
    path.write_text(CHECKER_SVG)
    return str(path)


@pytest.fixture
def black_room_path(tmp_path):
    path = tmp_path / 'black_room.png'
    cv2.imwrite(str(path), np.zeros((32, 32, 3), dtype=np.uint8))
    return str(path)


@pytest.fixture
def small_config(checker_path, black_room_path):
    """32x32 canvas where one texture covers the canvas exactly."""
    return {
        'render': {
            'canvas': {'width': 32, 'height': 32},
            'tile_resolution': 16,
            'supersample': 2,
            'repeat_factor': 2,
            'default_color': '#808080',
            'tile_background': '#ffffff',
            'strip_steps': 8,
            'pattern_scale': 1.0,
            'strategy': 'quad',
        },
        'rooms': {
            'black': {
                'base_image': black_room_path,
                'floor_rule': {'type': 'threshold', 'threshold': 40},
            },
            'black_scene': {
                'base_image': black_room_path,
                'floor_rule': {'type': 'threshold', 'threshold': 40},
                'scene': {
                    'camera': {
                        'type': 'orthographic',
                        'position': [0, 100, 0],
                        'target': [0, 0, 0],
                        'up': [0, 0, -1],
                        'view_height': 100,
                        'zoom': 1.0,
                    },
                    'plane': {
                        'width': 200,
                        'height': 200,
                        'rotation_deg': [-90, 0, 0],
                        'position': [0, 0, 0],
                        'tile_scale': 0.5,
                    },
                },
            },
            'missing': {
                'base_image': os.path.join(os.path.dirname(black_room_path), 'nope.png'),
                'floor_rule': {'type': 'threshold', 'threshold': 40},
            },
        },
        'catalog': {
            'patterns': [
                {'id': 'checker', 'code': 'T-1', 'name': 'Checker',
                 'svg_path': checker_path,
                 'zones': [{'id': 'cell-a', 'label': 'A'}, {'id': 'cell-b', 'label': 'B'}]},
            ],
            'colors': [
                {'id': 'red', 'name': 'Red', 'hex': '#ff0000'},
                {'id': 'blue', 'name': 'Blue', 'hex': '#0000ff'},
            ],
            'sizes': [
                {'id': 's20', 'label': '20 x 20 cm', 'width_cm': 20, 'height_cm': 20},
            ],
        },
    }
