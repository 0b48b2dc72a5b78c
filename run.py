"""
Tile Simulator
==============
Renders a recolored, seamlessly tiled vector pattern as the floor of a room
photograph and saves the composite as PNG.

Usage:
    python run.py --pattern checker --room kitchen --output outputs/kitchen.png
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from tile_simulator.cli import main

if __name__ == "__main__":
    sys.exit(main())
