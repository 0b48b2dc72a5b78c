"""
Catalog of patterns, colors and tile sizes offered to the user.
"""

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from .config import get_catalog_config
from .vector_shape_registry import to_hex, to_rgb


@dataclass(frozen=True)
class ZoneDescriptor:
    id: str
    label: str = ''


@dataclass(frozen=True)
class PatternDescriptor:
    id: str
    code: str
    name: str
    preview_url: str
    svg_path: str
    zones: Tuple[ZoneDescriptor, ...] = ()


@dataclass(frozen=True)
class ColorDescriptor:
    id: str
    name: str
    hex: str

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return to_rgb(self.hex)


@dataclass(frozen=True)
class SizeDescriptor:
    id: str
    label: str
    width_cm: float
    height_cm: float


class Catalog:
    """
    Lookup tables for the catalog section of the configuration
    """

    def __init__(self,
                 patterns: List[PatternDescriptor],
                 colors: List[ColorDescriptor],
                 sizes: List[SizeDescriptor]):
        self.patterns = list(patterns)
        self.colors = list(colors)
        self.sizes = list(sizes)
        self._patterns = {p.id: p for p in self.patterns}
        self._colors = {c.id: c for c in self.colors}
        self._sizes = {s.id: s for s in self.sizes}

    @classmethod
    def from_config(cls, config: Dict) -> 'Catalog':
        catalog = get_catalog_config(config)
        patterns = []
        for entry in catalog.get('patterns', []):
            entry = dict(entry)
            zones = tuple(ZoneDescriptor(**zone) for zone in entry.pop('zones', None) or [])
            entry.setdefault('preview_url', entry.get('svg_path', ''))
            entry.setdefault('code', entry['id'])
            entry.setdefault('name', entry['id'])
            patterns.append(PatternDescriptor(zones=zones, **entry))
        colors = [ColorDescriptor(id=c['id'], name=c.get('name', c['id']), hex=to_hex(c['hex']))
                  for c in catalog.get('colors', [])]
        sizes = [SizeDescriptor(**s) for s in catalog.get('sizes', [])]
        return cls(patterns, colors, sizes)

    def pattern(self, pattern_id: str) -> PatternDescriptor:
        if pattern_id not in self._patterns:
            raise KeyError(f"Unknown pattern '{pattern_id}'")
        return self._patterns[pattern_id]

    def find_pattern(self, pattern_id: str) -> Optional[PatternDescriptor]:
        return self._patterns.get(pattern_id)

    def color(self, color_id: str) -> ColorDescriptor:
        if color_id not in self._colors:
            raise KeyError(f"Unknown color '{color_id}'")
        return self._colors[color_id]

    def size(self, size_id: str) -> SizeDescriptor:
        if size_id not in self._sizes:
            raise KeyError(f"Unknown size '{size_id}'")
        return self._sizes[size_id]

    def resolve_color(self, value: str) -> str:
        """Catalog color id or any color string -> '#rrggbb'."""
        if value in self._colors:
            return self._colors[value].hex
        return to_hex(value)

    @property
    def base_color(self) -> Optional[str]:
        """First palette color, used to seed freshly detected regions."""
        return self.colors[0].hex if self.colors else None

    def to_dict(self) -> Dict:
        return {
            'patterns': [asdict(p) for p in self.patterns],
            'colors': [asdict(c) for c in self.colors],
            'sizes': [asdict(s) for s in self.sizes],
        }
