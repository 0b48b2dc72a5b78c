import asyncio
import xml.etree.ElementTree as ET

import numpy as np
import pytest

from tile_simulator.asset_cache import AssetCache
from tile_simulator.vector_shape_registry import (RegionColorMap, VectorShapeRegistry, assign_ids,
                                                  parse_document)

from conftest import BLUE, CHECKER_SVG, RED

MIXED_IDS_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">
  <rect x="0" y="0" width="5" height="5"/>
  <g><path id="x" d="M5,0 H10 V5 H5 Z"/></g>
  <polygon id="x" points="0,5 5,5 5,10"/>
  <rect id="  " x="5" y="5" width="5" height="5"/>
</svg>
"""

OVERLAP_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">
  <rect id="bottom" x="0" y="0" width="10" height="10" fill="#00ff00"/>
  <rect id="top" x="2" y="2" width="4" height="4" style="fill:#000000;stroke:red"/>
  <defs><rect id="hidden" x="0" y="0" width="10" height="10"/></defs>
</svg>
"""


def test_auto_ids_follow_document_order():
    document = parse_document(MIXED_IDS_SVG)
    assert document.region_ids == ('auto-shape-0', 'x', 'auto-shape-2', 'auto-shape-3')


def test_ids_are_stable_and_assignment_is_idempotent():
    first = parse_document(MIXED_IDS_SVG)
    second = parse_document(MIXED_IDS_SVG)
    assert first.region_ids == second.region_ids
    assert tuple(assign_ids(first.root)) == first.region_ids


def test_recolor_is_deterministic_and_leaves_document_untouched():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(CHECKER_SVG)
    colors = {'cell-a': '#ff0000'}

    first = registry.recolor(document, colors)
    second = registry.recolor(document, colors)

    assert first == second
    recolored = ET.fromstring(first)
    fills = {el.get('id'): el.get('fill') for el in recolored.iter() if el.get('id')}
    assert fills['cell-a'] == '#ff0000'
    assert fills['cell-b'] == '#000000'
    original = {el.get('id'): el.get('fill') for el in document.root.iter() if el.get('id')}
    assert original['cell-a'] == '#ffffff'


def test_recolor_replaces_inline_style_fill():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(OVERLAP_SVG)
    markup = registry.recolor(document, {'top': (255, 0, 0)})
    top = [el for el in ET.fromstring(markup).iter() if el.get('id') == 'top'][0]
    assert top.get('fill') == '#ff0000'
    assert top.get('style') == 'stroke:red'


def test_unparseable_source_passes_through():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document('<svg><rect')
    assert not document.is_parsed
    assert document.parse_error
    assert document.region_ids == ()
    assert registry.recolor(document, {}) == '<svg><rect'

    tile = registry.rasterize(document, {}, 8)
    assert tile.shape == (8, 8, 4)
    assert np.all(tile == 255)


def test_rasterize_recolored_checker():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(CHECKER_SVG)
    tile = registry.rasterize(document, {'cell-a': '#ff0000', 'cell-b': '#0000ff'}, 16)

    # Cell interiors are exact; only the shared edges may blend
    assert np.all(tile[1:7, 1:7] == RED)
    assert np.all(tile[9:15, 9:15] == RED)
    assert np.all(tile[1:7, 9:15] == BLUE)
    assert np.all(tile[9:15, 1:7] == BLUE)


def test_rasterize_falls_back_to_default_then_own_fill():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(CHECKER_SVG)

    own = registry.rasterize(document, {}, 16)
    assert np.all(own[1:7, 1:7, :3] == 255)
    assert np.all(own[1:7, 9:15, :3] == 0)

    defaulted = registry.rasterize(document, {}, 16, default='#808080')
    assert np.all(defaulted[:, :, :3] == 128)


def test_hit_test_returns_topmost_rendered_region():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(OVERLAP_SVG)
    assert registry.hit_test(document, (3, 3)) == 'top'
    assert registry.hit_test(document, (8, 8)) == 'bottom'
    assert registry.hit_test(document, (20, 20)) is None


def test_click_on_rotated_tile_maps_back_to_document():
    registry = VectorShapeRegistry(cache=AssetCache())
    document = parse_document(CHECKER_SVG)
    # After a clockwise quarter turn the top-left cell sits at the top-right
    point = registry.to_local_point(document, (15.5, 0.5), (16, 16), rotation_deg=90)
    np.testing.assert_allclose(point, (3.125, 3.125), atol=1e-9)
    assert registry.hit_test(document, point) == 'cell-a'


def test_color_map_rejects_unknown_ids_and_seeds_without_overwriting():
    colors = RegionColorMap(['a', 'b'])
    colors.paint('a', '#ff0000')
    with pytest.raises(KeyError):
        colors.paint('zzz', '#ff0000')

    colors.seed('#00ff00')
    assert colors['a'] == (255, 0, 0)
    assert colors['b'] == (0, 255, 0)

    colors.reset(['c'])
    assert len(colors) == 0
    assert colors.region_ids == ('c',)


def test_concurrent_loads_share_one_document(checker_path):
    cache = AssetCache()
    registry = VectorShapeRegistry(cache=cache)

    async def _load_twice():
        return await asyncio.gather(registry.load(checker_path), registry.load(checker_path))

    first, second = asyncio.run(_load_twice())
    assert first is second
    assert cache.loads_started == 1
    assert first.region_ids == ('cell-a', 'cell-b')


def test_load_of_invalid_markup_does_not_raise(tmp_path):
    path = tmp_path / 'broken.svg'
    path.write_text('this is not svg')
    registry = VectorShapeRegistry(cache=AssetCache())
    document = asyncio.run(registry.load(str(path)))
    assert not document.is_parsed
    assert document.source == 'this is not svg'


def test_infinite_coordinates_pass_through_unparsed():
    registry = VectorShapeRegistry(cache=AssetCache())
    source = ('<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">'
              '<path id="spike" d="M0,0 L0,1e999 L10,0 Z"/></svg>')
    document = parse_document(source)
    assert not document.is_parsed
    assert 'finite' in document.parse_error
    assert registry.recolor(document, {}) == source

    tile = registry.rasterize(document, {}, 16)
    assert np.all(tile == 255)


def test_overflowing_arc_radius_passes_through_unparsed():
    document = parse_document('<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">'
                              '<path d="M0,0 A1e200,1e200 0 0,1 10,10 Z"/></svg>')
    assert not document.is_parsed


def test_infinite_view_box_falls_back_to_shape_bounds():
    document = parse_document('<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 1e999 10">'
                              '<rect x="2" y="2" width="4" height="4"/></svg>')
    assert document.is_parsed
    assert document.view_box == (2.0, 2.0, 4.0, 4.0)
