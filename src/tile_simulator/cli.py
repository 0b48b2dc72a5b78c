"""
Command line front end: render one pattern into one room and save a PNG.

Usage:
    python run.py --pattern checker --room kitchen --output floor.png

Advanced:
    python run.py --pattern checker --room living --color cell-a=#c8643c \\
        --color cell-b=ocean --rotation 90 --strategy scene --no-reflections --output out.png
"""

import argparse
import asyncio
import os
import sys

from .config import load_config
from .headless_pipeline import HeadlessPipeline, RenderParams
from .projection import LightingControls


def _parse_color(value):
    region_id, sep, color = value.partition('=')
    if not sep or not region_id or not color:
        raise argparse.ArgumentTypeError(f"Expected ID=COLOR, got '{value}'")
    return region_id, color


def _parse_size(value):
    try:
        width, height = (int(v) for v in value.lower().split('x'))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got '{value}'")
    return width, height


def build_parser():
    parser = argparse.ArgumentParser(
        description="Render a recolored tile pattern into a room photo"
    )
    parser.add_argument('--pattern', '-p', type=str, required=True,
                        help='Catalog pattern id or path/URL of an SVG pattern')
    parser.add_argument('--room', '-r', type=str, required=True,
                        help='Room name from the configuration')
    parser.add_argument('--color', '-c', type=_parse_color, action='append', default=[],
                        metavar='ID=COLOR', help='Paint a region (catalog color id or #rrggbb); repeatable')
    parser.add_argument('--rotation', type=float, default=0.0,
                        help='Tile rotation in degrees, multiple of 90 (default: 0)')
    parser.add_argument('--repeat', type=int, default=None,
                        help='Mosaic repeat factor (default: from config)')
    parser.add_argument('--strategy', '-s', type=str, choices=['quad', 'scene'], default=None,
                        help='Projection strategy (default: from config)')
    parser.add_argument('--no-reflections', action='store_true',
                        help='Matte floor: no key light, roughness 1, metalness 0')
    parser.add_argument('--exposure', type=float, default=None, help='Tone mapping exposure')
    parser.add_argument('--brightness', type=float, default=1.0)
    parser.add_argument('--contrast', type=float, default=1.0)
    parser.add_argument('--saturation', type=float, default=1.0)
    parser.add_argument('--gamma', type=float, default=1.0)
    parser.add_argument('--canvas', type=_parse_size, default=None, metavar='WxH',
                        help='Output size (default: from config)')
    parser.add_argument('--config', type=str, default=None, help='Configuration YAML file')
    parser.add_argument('--base-dir', type=str, default=None,
                        help='Directory asset paths are relative to (default: working directory)')
    parser.add_argument('--output', '-o', type=str, required=True, help='Output PNG path')
    return parser


def _controls(args):
    touched = (args.exposure is not None or
               any(getattr(args, name) != 1.0 for name in ('brightness', 'contrast', 'saturation', 'gamma')))
    if not touched:
        return None
    controls = LightingControls(brightness=args.brightness, contrast=args.contrast,
                                saturation=args.saturation, gamma=args.gamma)
    if args.exposure is not None:
        controls.exposure = args.exposure
    return controls


async def _run(args):
    pipeline = HeadlessPipeline(
        config=load_config(args.config),
        base_dir=args.base_dir,
        on_regions_detected=lambda ids: print(f"🎨 Regions: {', '.join(ids) or '(none)'}")
    )
    params = RenderParams(
        pattern=args.pattern,
        room=args.room,
        colors=dict(args.color),
        rotation_deg=args.rotation,
        repeat_factor=args.repeat,
        strategy=args.strategy,
        controls=_controls(args),
        no_reflections=args.no_reflections,
        canvas_size=args.canvas,
    )
    try:
        result = await pipeline.rebuild(params)
        for warning in result.get('warnings', []):
            print(f"⚠️ {warning}")
        if not result['success']:
            print(f"❌ {result['message']}")
            return 1
        await pipeline.save_png(result['result'], args.output)
        return 0
    finally:
        pipeline.close()


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)

    print("\n" + "=" * 60)
    print("🏠 TILE SIMULATOR")
    print("=" * 60 + "\n")

    output_dir = os.path.dirname(os.path.abspath(args.output))
    os.makedirs(output_dir, exist_ok=True)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
