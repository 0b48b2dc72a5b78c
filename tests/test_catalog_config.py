import os

import pytest

from tile_simulator.catalog import Catalog
from tile_simulator.config import (get_catalog_config, get_render_config, get_room_config, load_config,
                                   resolve_asset_path)


def test_packaged_config_loads():
    config = load_config()
    render = get_render_config(config)
    assert render['canvas'] == {'width': 1366, 'height': 768}
    assert render['strategy'] in ('quad', 'scene')
    assert {'kitchen', 'living'} <= set(config['rooms'])
    assert get_catalog_config(config)['patterns']


def test_config_from_file(tmp_path):
    path = tmp_path / 'custom.yaml'
    path.write_text('render:\n  repeat_factor: 3\n')
    assert get_render_config(load_config(str(path))) == {'repeat_factor': 3}

    empty = tmp_path / 'empty.yaml'
    empty.write_text('')
    assert load_config(str(empty)) == {}


def test_unknown_room():
    with pytest.raises(KeyError, match='Unknown room'):
        get_room_config({'rooms': {'kitchen': {}}}, 'attic')


def test_resolve_asset_path(tmp_path):
    assert resolve_asset_path('a/b.png', str(tmp_path)) == str(tmp_path / 'a' / 'b.png')
    assert resolve_asset_path('https://example.com/t.svg', str(tmp_path)) == 'https://example.com/t.svg'
    assert resolve_asset_path('data:,x', str(tmp_path)) == 'data:,x'
    assert resolve_asset_path(None) is None


def test_catalog_lookups(small_config):
    catalog = Catalog.from_config(small_config)

    pattern = catalog.pattern('checker')
    assert pattern.code == 'T-1'
    assert [zone.id for zone in pattern.zones] == ['cell-a', 'cell-b']
    assert pattern.preview_url == pattern.svg_path
    assert catalog.find_pattern('hexagon') is None
    with pytest.raises(KeyError):
        catalog.pattern('hexagon')

    assert catalog.color('red').rgb == (255, 0, 0)
    assert catalog.size('s20').width_cm == 20
    with pytest.raises(KeyError):
        catalog.size('s99')


def test_color_resolution(small_config):
    catalog = Catalog.from_config(small_config)
    assert catalog.resolve_color('blue') == '#0000ff'
    assert catalog.resolve_color('#C8643C') == '#c8643c'
    assert catalog.base_color == '#ff0000'
    assert Catalog([], [], []).base_color is None


def test_catalog_serializes(small_config):
    payload = Catalog.from_config(small_config).to_dict()
    assert payload['patterns'][0]['zones'][1] == {'id': 'cell-b', 'label': 'B'}
    assert payload['colors'][0] == {'id': 'red', 'name': 'Red', 'hex': '#ff0000'}
    assert payload['sizes'][0]['label'] == '20 x 20 cm'


def test_packaged_catalog_patterns_exist():
    config = load_config()
    root = os.path.join(os.path.dirname(__file__), '..')
    for pattern in Catalog.from_config(config).patterns:
        assert os.path.exists(resolve_asset_path(pattern.svg_path, root)), pattern.svg_path
