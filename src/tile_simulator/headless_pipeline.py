"""
Headless Pipeline
=================
Runs the whole render without any UI: pattern -> recolored tile -> seamless
texture -> floor projection -> room composite -> PNG.

Key Features:
- One explicit rebuild(params) entry point returning a tagged result dict
- Last request wins: a newer rebuild cancels any older one still running
- Stage failures degrade to placeholders with warnings instead of aborting
- Events for detected regions and published composites
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from .asset_cache import AssetCache
from .catalog import Catalog
from .config import get_render_config, get_room_config, load_config, resolve_asset_path
from .errors import (AssetLoadError, PatternParseError, PixelReadbackError, RenderCancelled,
                     TileSimulatorError, UnsupportedSurfaceError, make_result)
from .projection import (LightingControls, Quad, QuadStripWarpProjector, QuadTarget,
                         ScenePerspectiveProjector, SceneParams, TextureData, render_scene)
from .room_mask_compositor import RoomAsset, RoomMaskCompositor, load_room_asset
from .texture_tiling_engine import Texture, TextureTilingEngine
from .vector_shape_registry import PatternDocument, RegionColorMap, VectorShapeRegistry, to_rgb

STRATEGIES = ('quad', 'scene')


class CancellationToken:
    """Set by a newer rebuild; checked by the older one after every await"""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def raise_if_cancelled(self):
        if self._cancelled:
            raise RenderCancelled("Render superseded by a newer request")


@dataclass
class RenderParams:
    """Everything one rebuild needs"""
    pattern: str
    room: str
    colors: Dict[str, Any] = field(default_factory=dict)
    rotation_deg: float = 0.0
    repeat_factor: Optional[int] = None
    strategy: Optional[str] = None
    controls: Optional[LightingControls] = None
    no_reflections: bool = False
    camera: Dict[str, Any] = field(default_factory=dict)
    plane: Dict[str, Any] = field(default_factory=dict)
    canvas_size: Optional[Tuple[int, int]] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'RenderParams':
        """Build parameters from a JSON-style dictionary (web and CLI input)."""
        data = dict(data)
        if 'pattern' not in data or 'room' not in data:
            raise KeyError("Both 'pattern' and 'room' are required")
        controls = data.pop('controls', None)
        if isinstance(controls, dict):
            controls = LightingControls(**controls)
        canvas = data.pop('canvas_size', None)
        if canvas is not None:
            canvas = (int(canvas[0]), int(canvas[1]))
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown render parameters: {sorted(unknown)}")
        return cls(controls=controls, canvas_size=canvas, **data)


def _with_overrides(params, overrides: Dict[str, Any]):
    values = {}
    for key, value in overrides.items():
        values[key] = tuple(float(v) for v in value) if isinstance(value, (list, tuple)) else value
    return replace(params, **values)


class HeadlessPipeline:
    """
    Stateful render pipeline for one user session
    """

    def __init__(self,
                 config: Optional[Dict] = None,
                 base_dir: Optional[str] = None,
                 cache: Optional[AssetCache] = None,
                 on_regions_detected: Optional[Callable[[List[str]], None]] = None,
                 on_publish: Optional[Callable[[Dict], None]] = None):
        """
        Initialize pipeline

        Args:
            config: Parsed configuration (loaded from the default file if omitted)
            base_dir: Directory relative asset paths are resolved against
            cache: Asset cache (a private one is created if omitted)
            on_regions_detected: Called with the region ids of each newly loaded pattern
            on_publish: Called with every published result
        """
        self.config = config if config is not None else load_config()
        self.render_config = get_render_config(self.config)
        self.base_dir = base_dir
        self.cache = cache if cache is not None else AssetCache()
        self.on_regions_detected = on_regions_detected
        self.on_publish = on_publish

        canvas = self.render_config.get('canvas', {})
        self.canvas_size = (int(canvas.get('width', 1366)), int(canvas.get('height', 768)))
        background = to_rgb(self.render_config.get('tile_background', '#ffffff'))

        self.catalog = Catalog.from_config(self.config)
        self.registry = VectorShapeRegistry(self.cache, supersample=self.render_config.get('supersample', 2))
        self.tiling = TextureTilingEngine(
            self.registry,
            tile_resolution=self.render_config.get('tile_resolution', 512),
            background=(background[2], background[1], background[0], 255)
        )
        self.quad_projector = QuadStripWarpProjector(steps=self.render_config.get('strip_steps', 250))
        self.scene_projector = ScenePerspectiveProjector()
        self.compositor = RoomMaskCompositor()

        self.document: Optional[PatternDocument] = None
        self.colors = RegionColorMap()
        self.last_result: Optional[Dict] = None
        self._rooms: Dict[Tuple, RoomAsset] = {}
        self._token: Optional[CancellationToken] = None

    # ─── Pattern state ────────────────────────────────────────────────────────

    def pattern_source(self, pattern: str) -> str:
        """Catalog pattern id, or a path / URL used as-is."""
        descriptor = self.catalog.find_pattern(pattern)
        source = descriptor.svg_path if descriptor is not None else pattern
        return resolve_asset_path(source, self.base_dir)

    async def load_pattern(self, pattern: str, warnings: Optional[List[str]] = None,
                           token: Optional[CancellationToken] = None) -> PatternDocument:
        """
        Load a pattern and make it the active one

        A pattern that cannot be read becomes an unparsed placeholder. When a
        token is given and gets cancelled during the load, the active pattern
        and its colors are left as they were.

        Raises:
            RenderCancelled: if the token was cancelled while loading
        """
        warnings = warnings if warnings is not None else []
        try:
            document = await self.registry.load(self.pattern_source(pattern))
        except AssetLoadError as e:
            print(f"⚠️ {e}")
            warnings.append(str(e))
            document = PatternDocument(source='', parse_error=str(e))
        else:
            if not document.is_parsed:
                warnings.append(f"Pattern could not be parsed: {document.parse_error}")
        if token is not None:
            token.raise_if_cancelled()
        self._activate(document)
        return document

    def _activate(self, document: PatternDocument):
        if document is self.document:
            return
        self.document = document
        self.colors.reset(document.region_ids)
        if self.render_config.get('seed_regions') and self.catalog.base_color:
            self.colors.seed(self.catalog.base_color)
        if self.on_regions_detected is not None:
            self.on_regions_detected(list(document.region_ids))

    def paint(self, region_id: str, color: str):
        """
        Paint one region of the active pattern (catalog color id or color string)

        Raises:
            PatternParseError: if the active pattern has no regions to paint
            KeyError: for ids the active pattern does not have
        """
        if self.document is not None and not self.document.is_parsed:
            raise PatternParseError(f"Regions are disabled: {self.document.parse_error}")
        self.colors.paint(region_id, self.catalog.resolve_color(color))

    def region_at(self, pixel: Tuple[float, float], raster_size: Tuple[int, int],
                  rotation_deg: float = 0.0) -> Optional[str]:
        """Region of the active pattern under a click on its tile preview."""
        if self.document is None:
            return None
        point = self.registry.to_local_point(self.document, pixel, raster_size, rotation_deg)
        return self.registry.hit_test(self.document, point)

    # ─── Rebuild ──────────────────────────────────────────────────────────────

    async def rebuild(self, params: RenderParams) -> Dict[str, Any]:
        """
        Render and publish one composite

        Args:
            params: Render parameters

        Returns:
            Dictionary with:
            - 'success': Boolean success flag
            - 'status': 'published', 'cancelled', 'aborted' or 'failed'
            - 'kind': Error kind ('ok' on success)
            - 'message': Status message
            - 'result': Composite image (BGRA) or None
            - 'png': Encoded composite (on success)
            - 'warnings': Degraded stages (missing assets, unreadable masks, ...)
        """
        if self._token is not None:
            self._token.cancel()
        token = CancellationToken()
        self._token = token
        warnings: List[str] = []

        print(f"🔄 Rebuilding: pattern={params.pattern}, room={params.room}")
        try:
            return await self._rebuild(params, token, warnings)
        except RenderCancelled as e:
            print("   ⏭️ Render superseded, nothing published")
            return make_result(False, str(e), kind=e.kind, status='cancelled', warnings=warnings)
        except UnsupportedSurfaceError as e:
            print(f"❌ Render pass aborted: {e}")
            return make_result(False, str(e), kind=e.kind, status='aborted', warnings=warnings)
        except (KeyError, ValueError) as e:
            message = e.args[0] if isinstance(e, KeyError) and e.args else str(e)
            print(f"❌ Invalid render parameters: {message}")
            return make_result(False, message, kind='invalid_params', status='failed', warnings=warnings)
        except TileSimulatorError as e:
            print(f"❌ Render failed: {e}")
            return make_result(False, str(e), kind=e.kind, status='failed', warnings=warnings)
        finally:
            if self._token is token:
                self._token = None

    async def _rebuild(self, params: RenderParams, token: CancellationToken,
                       warnings: List[str]) -> Dict[str, Any]:
        room_config = get_room_config(self.config, params.room)
        width, height = params.canvas_size or self.canvas_size
        strategy = params.strategy or self.render_config.get('strategy', 'scene')
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy '{strategy}'. Available: {list(STRATEGIES)}")
        if strategy == 'scene' and 'scene' not in room_config:
            warnings.append(f"Room '{params.room}' has no scene calibration, using the quad warp")
            strategy = 'quad'

        document = await self.load_pattern(params.pattern, warnings, token)
        token.raise_if_cancelled()

        for region_id, color in params.colors.items():
            try:
                self.paint(region_id, color)
            except (KeyError, PatternParseError):
                warnings.append(f"Unknown region '{region_id}' ignored")

        repeat_factor = params.repeat_factor
        if repeat_factor is None:
            repeat_factor = self.render_config.get('repeat_factor', 4)
        default_color = self.render_config.get('default_color')
        texture = await asyncio.to_thread(
            self.tiling.build_texture, document, dict(self.colors),
            params.rotation_deg, repeat_factor, default_color
        )
        token.raise_if_cancelled()

        room = await self._load_room(params.room, room_config, (width, height), warnings)
        token.raise_if_cancelled()

        if strategy == 'quad':
            floor = await asyncio.to_thread(self._project_quad, texture, room_config, width, height)
        else:
            floor = await self._project_scene(texture, room_config, params, width, height, token)
        token.raise_if_cancelled()

        image = await asyncio.to_thread(self._compose, floor, room, warnings)
        token.raise_if_cancelled()

        png = await self.export_png(image)
        token.raise_if_cancelled()

        result = make_result(
            True, 'Render complete', result=image,
            status='published',
            png=png,
            strategy=strategy,
            regions=list(document.region_ids),
            colors=self.colors.as_hex_dict(),
            warnings=warnings,
        )
        self.last_result = result
        if self.on_publish is not None:
            self.on_publish(result)
        print(f"✅ Render published ({width}x{height}, {strategy})")
        return result

    async def _load_room(self, name: str, room_config: Dict, canvas_size: Tuple[int, int],
                         warnings: List[str]) -> Optional[RoomAsset]:
        key = (name,) + tuple(canvas_size)
        room = self._rooms.get(key)
        if room is None:
            try:
                room = await load_room_asset(name, room_config, canvas_size, self.base_dir, self.cache)
            except AssetLoadError as e:
                print(f"⚠️ {e}")
                warnings.append(str(e))
                return None
            self._rooms[key] = room
        warnings.extend(room.warnings)
        return room

    def _project_quad(self, texture: Texture, room_config: Dict, width: int, height: int) -> np.ndarray:
        scale = float(self.render_config.get('pattern_scale', 1.0))
        fill = self.tiling.fill_pattern(texture, width, height, scale)
        quad_config = room_config.get('quad')
        if quad_config:
            quad = Quad.from_fractions(quad_config['fractions'], width, height)
            quad = quad.rotated(quad_config.get('rotation_deg', 0.0), center=(width / 2.0, height / 2.0))
        else:
            quad = Quad.canvas(width, height)
        return self.quad_projector.project(Texture(fill, texture.repeat_factor), QuadTarget(quad, width, height))

    def scene_params(self, room_config: Dict, params: RenderParams) -> SceneParams:
        scene = SceneParams.from_config(room_config['scene'],
                                        controls=params.controls,
                                        no_reflections=params.no_reflections)
        if params.camera:
            scene.camera = _with_overrides(scene.camera, params.camera)
        if params.plane:
            scene.plane = _with_overrides(scene.plane, params.plane)
        return scene

    async def _project_scene(self, texture: Texture, room_config: Dict, params: RenderParams,
                             width: int, height: int, token: CancellationToken) -> np.ndarray:
        scene = self.scene_params(room_config, params)
        data = await asyncio.to_thread(TextureData.from_texture, texture)
        token.raise_if_cancelled()

        device = self.scene_projector.device_texture_for(data)
        try:
            frame = await asyncio.to_thread(render_scene, scene, device, width, height)
            token.raise_if_cancelled()
        except BaseException:
            if device is not self.scene_projector.scene.texture:
                device.dispose()
            raise
        self.scene_projector.commit(scene, device)
        return frame

    def _compose(self, floor: np.ndarray, room: Optional[RoomAsset], warnings: List[str]) -> np.ndarray:
        if room is None:
            return self.compositor.composite(floor, None, None)
        try:
            foreground = self.compositor.build_foreground_layer(room)
        except PixelReadbackError as e:
            print(f"⚠️ {e}; drawing the room photo unprocessed")
            warnings.append(str(e))
            foreground = self.compositor.unprocessed_foreground(room)
        return self.compositor.composite(floor, room.shadow, foreground, room.shadow_intensity)

    # ─── Export ───────────────────────────────────────────────────────────────

    async def export_png(self, image: np.ndarray) -> bytes:
        """Encode an image as PNG bytes."""
        ok, buffer = await asyncio.to_thread(cv2.imencode, '.png', image)
        if not ok:
            raise TileSimulatorError("PNG encoding failed")
        return buffer.tobytes()

    async def save_png(self, image: np.ndarray, path: str) -> str:
        """Encode an image and write it to path."""
        data = await self.export_png(image)

        def _write():
            with open(path, 'wb') as f:
                f.write(data)

        await asyncio.to_thread(_write)
        print(f"💾 Saved {path}")
        return path

    def close(self):
        """Release scene device resources."""
        self.scene_projector.dispose()
