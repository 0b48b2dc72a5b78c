"""
Vector Shape Registry
=====================
Loads SVG pattern documents and exposes their drawable shapes as
addressable, independently colorable regions.

Key Features:
- Stable region identifiers (explicit ids, or auto-shape-N in document order)
- Recolor by identifier through an explicit id -> color mapping
- Rasterization of the recolored document at any resolution
- Point hit-testing for click-to-paint
- Raw passthrough of sources that are not valid SVG
"""

import copy
import math
import re
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import ImageColor

from . import svg_geometry
from .asset_cache import AssetCache, default_cache, read_source

SVG_NS = 'http://www.w3.org/2000/svg'
XLINK_NS = 'http://www.w3.org/1999/xlink'
ET.register_namespace('', SVG_NS)
ET.register_namespace('xlink', XLINK_NS)

DRAWABLE_TAGS = ('path', 'polygon', 'rect')
NON_RENDERED_CONTAINERS = ('defs', 'clipPath', 'mask', 'symbol', 'pattern', 'marker')
AUTO_ID_PREFIX = 'auto-shape-'

Color = Union[str, Tuple[int, int, int]]

_STYLE_FILL_RE = re.compile(r'(^|;)\s*fill\s*:[^;]*;?')


def _local_name(tag) -> str:
    return tag.rsplit('}', 1)[-1] if isinstance(tag, str) else ''


def to_rgb(color: Color) -> Tuple[int, int, int]:
    """Normalize a hex / CSS color string or an RGB sequence to an RGB tuple."""
    if isinstance(color, str):
        return tuple(ImageColor.getrgb(color.strip())[:3])
    r, g, b = (int(c) for c in tuple(color)[:3])
    return (r, g, b)


def to_hex(color: Color) -> str:
    r, g, b = to_rgb(color)
    return f'#{r:02x}{g:02x}{b:02x}'


def _parse_fill(value: Optional[str]):
    """Returns an RGB tuple, 'none', or None when the value is absent or unparseable."""
    if value is None:
        return None
    value = value.strip()
    if not value or value == 'inherit':
        return None
    if value == 'none' or value.startswith('url('):
        return 'none'
    try:
        return to_rgb(value)
    except ValueError:
        return None


def _style_value(style: Optional[str], name: str) -> Optional[str]:
    for declaration in (style or '').split(';'):
        key, _, value = declaration.partition(':')
        if key.strip() == name:
            return value.strip()
    return None


@dataclass(frozen=True, eq=False)
class Region:
    """One addressable drawable shape"""
    id: str
    tag: str
    polygons: Tuple[np.ndarray, ...]
    fill: Optional[Tuple[int, int, int]]
    fill_rule: str = 'nonzero'
    rendered: bool = True


@dataclass(frozen=True, eq=False)
class PatternDocument:
    """
    Parsed pattern: region geometry plus document bounds.

    Immutable after creation; recoloring produces new markup or bitmaps.
    A document that failed to parse keeps its raw source and has no regions.
    """
    source: str
    root: Optional[ET.Element] = None
    regions: Tuple[Region, ...] = ()
    view_box: Tuple[float, float, float, float] = (0.0, 0.0, 1.0, 1.0)
    region_ids: Tuple[str, ...] = ()
    parse_error: Optional[str] = None
    _by_id: Dict[str, Region] = field(default_factory=dict, repr=False)

    @property
    def is_parsed(self) -> bool:
        return self.parse_error is None

    def region(self, region_id: str) -> Optional[Region]:
        return self._by_id.get(region_id)


class RegionColorMap(Mapping):
    """
    Region id -> RGB color overlay for one pattern document.

    Keys are restricted to the document's region ids.
    """

    def __init__(self, region_ids: Iterable[str] = (), colors: Optional[Mapping] = None):
        self._region_ids = tuple(region_ids)
        self._allowed = set(self._region_ids)
        self._colors: Dict[str, Tuple[int, int, int]] = {}
        for region_id, color in (colors or {}).items():
            self.paint(region_id, color)

    def __getitem__(self, region_id):
        return self._colors[region_id]

    def __iter__(self):
        return iter(self._colors)

    def __len__(self):
        return len(self._colors)

    @property
    def region_ids(self) -> Tuple[str, ...]:
        return self._region_ids

    def paint(self, region_id: str, color: Color):
        if region_id not in self._allowed:
            raise KeyError(f"Unknown region id: {region_id}")
        self._colors[region_id] = to_rgb(color)

    def seed(self, base_color: Color):
        """Give every region without a color the base color."""
        rgb = to_rgb(base_color)
        for region_id in self._region_ids:
            self._colors.setdefault(region_id, rgb)

    def reset(self, region_ids: Iterable[str] = ()):
        """Clear all colors; called when the active pattern changes."""
        self._region_ids = tuple(region_ids)
        self._allowed = set(self._region_ids)
        self._colors.clear()

    def resolve(self, region_id: str, default: Optional[Color] = None):
        if region_id in self._colors:
            return self._colors[region_id]
        return to_rgb(default) if default is not None else None

    def as_hex_dict(self) -> Dict[str, str]:
        return {region_id: to_hex(rgb) for region_id, rgb in self._colors.items()}


def assign_ids(root: ET.Element) -> List[str]:
    """
    Ensure every drawable element carries a unique id

    Missing, blank or duplicated ids become auto-shape-{index}, index being
    the element's position among drawable elements in document order.
    Running it again on the same tree returns the same list.

    Args:
        root: SVG root element (modified in place)

    Returns:
        Region ids in document order
    """
    ids: List[str] = []
    seen = set()
    drawables = [el for el in root.iter() if _local_name(el.tag) in DRAWABLE_TAGS]
    explicit = {(el.get('id') or '').strip() for el in drawables}

    for index, element in enumerate(drawables):
        region_id = (element.get('id') or '').strip()
        if not region_id or region_id in seen:
            region_id = f'{AUTO_ID_PREFIX}{index}'
            while region_id in seen or region_id in explicit:
                region_id += '-1'
            element.set('id', region_id)
        seen.add(region_id)
        ids.append(region_id)
    return ids


def _element_polygons(element: ET.Element, tag: str) -> List[np.ndarray]:
    if tag == 'path':
        return svg_geometry.path_polygons(element.get('d', ''))
    if tag == 'polygon':
        return svg_geometry.points_polygon(element.get('points', ''))
    if tag == 'rect':
        values = [svg_geometry.parse_numbers(element.get(name, '0') or '0') for name in ('x', 'y', 'width', 'height')]
        x, y, w, h = (v[0] if v else 0.0 for v in values)
        return svg_geometry.rect_polygon(x, y, w, h)
    return []


def _collect_regions(root: ET.Element) -> List[Region]:
    regions: List[Region] = []

    def walk(element, matrix, fill, fill_rule, rendered):
        tag = _local_name(element.tag)
        matrix = matrix @ svg_geometry.parse_transform(element.get('transform', ''))
        style = element.get('style')
        own_fill = _parse_fill(_style_value(style, 'fill') or element.get('fill'))
        if own_fill is not None:
            fill = own_fill
        fill_rule = (_style_value(style, 'fill-rule') or element.get('fill-rule') or fill_rule).strip()
        rendered = rendered and tag not in NON_RENDERED_CONTAINERS

        if tag in DRAWABLE_TAGS:
            polygons = [svg_geometry.apply_transform(p, matrix) for p in _element_polygons(element, tag)]
            regions.append(Region(
                id=element.get('id'),
                tag=tag,
                polygons=tuple(polygons),
                fill=None if fill == 'none' else fill,
                fill_rule='evenodd' if fill_rule == 'evenodd' else 'nonzero',
                rendered=rendered,
            ))
        for child in element:
            walk(child, matrix, fill, fill_rule, rendered)

    # SVG initial fill is black
    walk(root, np.eye(3), (0, 0, 0), 'nonzero', True)
    return regions


def _document_bounds(root: ET.Element, regions: Sequence[Region]) -> Tuple[float, float, float, float]:
    view_box = svg_geometry.parse_numbers(root.get('viewBox', ''))
    if len(view_box) == 4 and all(map(math.isfinite, view_box)) and view_box[2] > 0 and view_box[3] > 0:
        return tuple(view_box)
    width = svg_geometry.parse_numbers(root.get('width', ''))
    height = svg_geometry.parse_numbers(root.get('height', ''))
    if width and height and 0 < width[0] < math.inf and 0 < height[0] < math.inf:
        return (0.0, 0.0, width[0], height[0])
    points = [p for r in regions for p in r.polygons if len(p)]
    if points:
        stacked = np.concatenate(points)
        x_min, y_min = stacked.min(axis=0)
        x_max, y_max = stacked.max(axis=0)
        if x_max > x_min and y_max > y_min:
            return (float(x_min), float(y_min), float(x_max - x_min), float(y_max - y_min))
    return (0.0, 0.0, 1.0, 1.0)


def parse_document(source: str) -> PatternDocument:
    """
    Parse SVG markup into a PatternDocument

    Never raises for malformed input: the returned document then carries
    the raw source and the parse failure reason.
    """
    try:
        root = ET.fromstring(source)
        if _local_name(root.tag) != 'svg':
            raise ValueError(f"Root element is <{_local_name(root.tag)}>, expected <svg>")
        region_ids = assign_ids(root)
        regions = _collect_regions(root)
        if not all(np.isfinite(p).all() for region in regions for p in region.polygons):
            raise ValueError("Shape coordinates are not finite")
        view_box = _document_bounds(root, regions)
    except (ET.ParseError, ValueError, OverflowError) as e:
        return PatternDocument(source=source, parse_error=str(e))

    return PatternDocument(
        source=source,
        root=root,
        regions=tuple(regions),
        view_box=view_box,
        region_ids=tuple(region_ids),
        _by_id={r.id: r for r in regions},
    )


class VectorShapeRegistry:
    """
    Loads, recolors, rasterizes and hit-tests vector patterns
    """

    def __init__(self, cache: Optional[AssetCache] = None, supersample: int = 2):
        """
        Initialize registry

        Args:
            cache: Asset cache shared with the rest of the pipeline
            supersample: Supersampling factor used for anti-aliased rasterization
        """
        self.cache = cache if cache is not None else default_cache
        self.supersample = max(1, int(supersample))

    async def load(self, source: str) -> PatternDocument:
        """
        Load and parse a pattern, once per source

        Raises:
            AssetLoadError: if the source cannot be read
        """
        async def _loader():
            data = await read_source(source)
            text = data.decode('utf-8', errors='replace')
            document = parse_document(text)
            if document.is_parsed:
                print(f"🧩 Pattern loaded: {len(document.region_ids)} regions ({source[:60]})")
            else:
                print(f"⚠️ Could not parse pattern {source[:60]}: {document.parse_error}")
            return document

        return await self.cache.get(('svg', source), _loader)

    def recolor(self, document: PatternDocument, colors: Mapping,
                default: Optional[Color] = None) -> str:
        """
        Serialize the document with per-region fills applied

        Args:
            document: Source document (not modified)
            colors: Region id -> color
            default: Fill for regions missing from colors (None keeps their own fill)

        Returns:
            SVG markup; the raw source for unparsed documents
        """
        if not document.is_parsed:
            return document.source

        root = copy.deepcopy(document.root)
        for element in root.iter():
            if _local_name(element.tag) not in DRAWABLE_TAGS:
                continue
            color = colors.get(element.get('id'), default)
            if color is None:
                continue
            element.set('fill', to_hex(color))
            style = element.get('style')
            if style and _style_value(style, 'fill') is not None:
                cleaned = _STYLE_FILL_RE.sub(r'\1', style).strip('; ')
                if cleaned:
                    element.set('style', cleaned)
                else:
                    del element.attrib['style']
        return ET.tostring(root, encoding='unicode')

    def rasterize(self, document: PatternDocument, colors: Mapping,
                  size: Union[int, Tuple[int, int]],
                  default: Optional[Color] = None,
                  background: Tuple[int, int, int, int] = (255, 255, 255, 255)) -> np.ndarray:
        """
        Render the recolored document to a BGRA bitmap

        Args:
            document: Pattern document
            colors: Region id -> color
            size: Output size (width, height) or a single side for square tiles
            default: Fill for unmapped regions
            background: BGRA background

        Returns:
            BGRA image (height x width x 4, uint8). Unparsed documents render
            as a blank background placeholder.
        """
        width, height = (size, size) if isinstance(size, int) else size
        ss = self.supersample
        canvas = np.empty((height * ss, width * ss, 4), dtype=np.uint8)
        canvas[:] = background

        if document.is_parsed and width > 0 and height > 0:
            vb_x, vb_y, vb_w, vb_h = document.view_box
            scale = np.array([width * ss / vb_w, height * ss / vb_h])
            offset = np.array([vb_x, vb_y])

            for region in document.regions:
                if not region.rendered:
                    continue
                color = colors.get(region.id, default)
                rgb = to_rgb(color) if color is not None else region.fill
                if rgb is None:
                    continue
                polygons = [(p - offset) * scale for p in region.polygons]
                mask = svg_geometry.fill_mask(polygons, height * ss, width * ss, region.fill_rule)
                canvas[mask] = (rgb[2], rgb[1], rgb[0], 255)

        if ss > 1 and width > 0 and height > 0:
            canvas = cv2.resize(canvas, (width, height), interpolation=cv2.INTER_AREA)
        return canvas

    def hit_test(self, document: PatternDocument, point: Tuple[float, float]) -> Optional[str]:
        """
        Find the region under a point given in document units

        Returns:
            Id of the topmost region containing the point, or None
        """
        if not document.is_parsed:
            return None
        x, y = point
        for region in reversed(document.regions):
            if region.rendered and svg_geometry.contains_point(region.polygons, x, y, region.fill_rule):
                return region.id
        return None

    @staticmethod
    def to_local_point(document: PatternDocument, pixel: Tuple[float, float],
                       raster_size: Tuple[int, int], rotation_deg: float = 0.0) -> Tuple[float, float]:
        """
        Map a pixel on a (possibly rotated) tile raster back to document units

        Args:
            document: Pattern document the raster was made from
            pixel: (x, y) in raster pixels
            raster_size: (width, height) of the raster
            rotation_deg: Clockwise rotation applied to the raster

        Returns:
            (x, y) in document user units
        """
        width, height = raster_size
        cx, cy = width / 2.0, height / 2.0
        angle = math.radians(-rotation_deg)
        dx, dy = pixel[0] - cx, pixel[1] - cy
        ux = cx + dx * math.cos(angle) - dy * math.sin(angle)
        uy = cy + dx * math.sin(angle) + dy * math.cos(angle)
        vb_x, vb_y, vb_w, vb_h = document.view_box
        return (vb_x + ux / width * vb_w, vb_y + uy / height * vb_h)
