import asyncio

import cv2
import numpy as np
import pytest

import tile_simulator.headless_pipeline as headless_pipeline
from tile_simulator.asset_cache import AssetCache
from tile_simulator.errors import PatternParseError
from tile_simulator.headless_pipeline import CancellationToken, HeadlessPipeline, RenderParams
from tile_simulator.projection import LightingControls

from conftest import BLUE, RED

GRAY = (128, 128, 128, 255)


def _pipeline(config, **kwargs):
    return HeadlessPipeline(config=config, cache=AssetCache(), **kwargs)


def _checker_params(**overrides):
    values = dict(pattern='checker', room='black', colors={'cell-a': 'red', 'cell-b': 'blue'})
    values.update(overrides)
    return RenderParams(**values)


def _assert_cell(image, row, col, color, cell=8):
    # Cell interior; pixels on a shared cell edge may blend
    block = image[row * cell + 1:(row + 1) * cell - 1, col * cell + 1:(col + 1) * cell - 1]
    assert (block == np.array(color, dtype=np.uint8)).all()


def test_checkerboard_renders_end_to_end(small_config):
    published = []
    pipeline = _pipeline(small_config, on_publish=published.append)
    result = asyncio.run(pipeline.rebuild(_checker_params()))

    assert result['success'] is True
    assert result['status'] == 'published'
    assert result['strategy'] == 'quad'
    assert result['warnings'] == []
    assert result['regions'] == ['cell-a', 'cell-b']
    assert result['colors'] == {'cell-a': '#ff0000', 'cell-b': '#0000ff'}
    assert result['png'].startswith(b'\x89PNG')

    image = result['result']
    assert image.shape == (32, 32, 4)
    for row in range(4):
        for col in range(4):
            _assert_cell(image, row, col, RED if (row + col) % 2 == 0 else BLUE)
    assert published == [result]
    assert pipeline.last_result is result


def test_unmapped_regions_use_the_default_color(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(RenderParams(pattern='checker', room='black')))
    assert (result['result'] == np.array(GRAY, dtype=np.uint8)).all()
    assert result['colors'] == {}


def test_seeded_regions_take_the_first_palette_color(small_config):
    small_config['render']['seed_regions'] = True
    result = asyncio.run(_pipeline(small_config).rebuild(RenderParams(pattern='checker', room='black')))
    assert result['colors'] == {'cell-a': '#ff0000', 'cell-b': '#ff0000'}
    assert (result['result'] == np.array(RED, dtype=np.uint8)).all()


def test_quarter_turn_swaps_the_cells(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(rotation_deg=90)))
    _assert_cell(result['result'], 0, 0, BLUE)
    _assert_cell(result['result'], 0, 1, RED)


def test_newer_rebuild_cancels_the_older_one(small_config):
    published = []
    pipeline = _pipeline(small_config, on_publish=published.append)

    async def scenario():
        return await asyncio.gather(
            pipeline.rebuild(_checker_params(colors={'cell-a': 'blue'})),
            pipeline.rebuild(_checker_params()),
        )

    first, second = asyncio.run(scenario())
    assert first['status'] == 'cancelled'
    assert first['kind'] == 'cancelled'
    assert first['result'] is None
    assert second['status'] == 'published'
    assert published == [second]
    _assert_cell(second['result'], 0, 0, RED)


def test_superseded_pattern_load_keeps_the_newer_pattern(small_config, tmp_path, monkeypatch):
    solo = tmp_path / 'solo.svg'
    solo.write_text('<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 10 10">'
                    '<rect id="solo" width="10" height="10" fill="#00ff00"/></svg>')
    detected = []
    pipeline = _pipeline(small_config, on_regions_detected=detected.append)
    real_load = pipeline.registry.load

    async def slow_solo_load(source):
        document = await real_load(source)
        if source.endswith('solo.svg'):
            await asyncio.sleep(0.05)
        return document

    monkeypatch.setattr(pipeline.registry, 'load', slow_solo_load)

    async def scenario():
        return await asyncio.gather(
            pipeline.rebuild(RenderParams(pattern=str(solo), room='black', colors={'solo': 'blue'})),
            pipeline.rebuild(_checker_params(colors={'cell-a': 'red'})),
        )

    first, second = asyncio.run(scenario())
    assert first['status'] == 'cancelled'
    assert second['status'] == 'published'
    assert pipeline.document.region_ids == ('cell-a', 'cell-b')
    assert pipeline.colors.as_hex_dict() == {'cell-a': '#ff0000'}
    assert detected == [['cell-a', 'cell-b']]
    assert pipeline.region_at((2, 2), (16, 16)) == 'cell-a'


def test_cancelled_scene_render_releases_its_texture(small_config, monkeypatch):
    pipeline = _pipeline(small_config)
    real_render = headless_pipeline.render_scene

    def render_then_supersede(*args):
        frame = real_render(*args)
        pipeline._token.cancel()
        return frame

    monkeypatch.setattr(headless_pipeline, 'render_scene', render_then_supersede)
    result = asyncio.run(pipeline.rebuild(_checker_params(room='black_scene', strategy='scene')))
    tracker = pipeline.scene_projector.tracker
    assert result['status'] == 'cancelled'
    assert tracker.count('texture') == 0
    assert pipeline.scene_projector.scene.texture is None

    monkeypatch.setattr(headless_pipeline, 'render_scene', real_render)
    result = asyncio.run(pipeline.rebuild(_checker_params(room='black_scene', strategy='scene')))
    assert result['status'] == 'published'
    assert result['strategy'] == 'scene'
    assert tracker.count('texture') == 1

    pipeline.close()
    assert tracker.count() == 0


def test_scene_render_reuses_the_device_texture(small_config):
    pipeline = _pipeline(small_config)
    params = _checker_params(room='black_scene', strategy='scene', no_reflections=True,
                             controls=LightingControls(brightness=1.2))
    asyncio.run(pipeline.rebuild(params))
    attached = pipeline.scene_projector.scene.texture
    asyncio.run(pipeline.rebuild(params))

    assert pipeline.scene_projector.scene.texture is attached
    assert pipeline.scene_projector.tracker.count('texture') == 1


def test_scene_strategy_without_calibration_falls_back_to_quad(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(strategy='scene')))
    assert result['status'] == 'published'
    assert result['strategy'] == 'quad'
    assert len(result['warnings']) == 1


def test_missing_room_photo_degrades_to_the_floor(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(room='missing')))
    assert result['success'] is True
    assert len(result['warnings']) == 1
    _assert_cell(result['result'], 0, 0, RED)


def test_unknown_room_is_invalid(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(room='attic')))
    assert result['success'] is False
    assert result['status'] == 'failed'
    assert result['kind'] == 'invalid_params'
    assert 'Unknown room' in result['message']


def test_non_right_angle_rotation_is_invalid(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(rotation_deg=45)))
    assert result['status'] == 'failed'
    assert result['kind'] == 'invalid_params'


def test_zero_repeat_factor_is_invalid(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(repeat_factor=0)))
    assert result['status'] == 'failed'
    assert result['kind'] == 'invalid_params'
    assert 'repeat_factor' in result['message']


def test_unknown_region_is_ignored_with_a_warning(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(
        _checker_params(colors={'cell-a': 'red', 'grout': 'blue'})))
    assert result['status'] == 'published'
    assert result['warnings'] == ["Unknown region 'grout' ignored"]


def test_unreadable_pattern_renders_a_placeholder(small_config, tmp_path):
    result = asyncio.run(_pipeline(small_config).rebuild(
        RenderParams(pattern=str(tmp_path / 'gone.svg'), room='black')))
    assert result['status'] == 'published'
    assert result['regions'] == []
    assert len(result['warnings']) == 1
    # Tile background
    assert (result['result'] == 255).all()


def test_canvas_size_override(small_config):
    result = asyncio.run(_pipeline(small_config).rebuild(_checker_params(canvas_size=(16, 8))))
    assert result['result'].shape == (8, 16, 4)
    _assert_cell(result['result'], 0, 1, BLUE)


def test_regions_detected_once_per_pattern(small_config):
    detected = []
    pipeline = _pipeline(small_config, on_regions_detected=detected.append)
    asyncio.run(pipeline.rebuild(_checker_params()))
    asyncio.run(pipeline.rebuild(_checker_params()))
    assert detected == [['cell-a', 'cell-b']]


def test_paint_and_hit_test(small_config):
    pipeline = _pipeline(small_config)
    assert pipeline.region_at((2, 2), (16, 16)) is None

    asyncio.run(pipeline.load_pattern('checker'))
    pipeline.paint('cell-a', 'blue')
    assert pipeline.colors.as_hex_dict() == {'cell-a': '#0000ff'}
    with pytest.raises(KeyError):
        pipeline.paint('grout', 'red')

    assert pipeline.region_at((2, 2), (16, 16)) == 'cell-a'
    assert pipeline.region_at((12, 2), (16, 16)) == 'cell-b'
    # Top-right of a quarter-turned tile shows the original top-left
    assert pipeline.region_at((12, 2), (16, 16), rotation_deg=90) == 'cell-a'


def test_paint_on_unparsed_pattern_is_refused(small_config, tmp_path):
    broken = tmp_path / 'broken.svg'
    broken.write_text('<svg><path')
    pipeline = _pipeline(small_config)
    warnings = []
    document = asyncio.run(pipeline.load_pattern(str(broken), warnings))

    assert not document.is_parsed
    assert len(warnings) == 1
    with pytest.raises(PatternParseError):
        pipeline.paint('cell-a', 'red')


def test_save_png(small_config, tmp_path):
    pipeline = _pipeline(small_config)
    result = asyncio.run(pipeline.rebuild(_checker_params()))
    path = asyncio.run(pipeline.save_png(result['result'], str(tmp_path / 'out.png')))

    saved = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    np.testing.assert_array_equal(saved, result['result'])


def test_render_params_from_dict():
    params = RenderParams.from_dict({
        'pattern': 'checker', 'room': 'black',
        'controls': {'exposure': 1.0, 'gamma': 1.1},
        'canvas_size': [64, 32],
    })
    assert params.controls == LightingControls(exposure=1.0, gamma=1.1)
    assert params.canvas_size == (64, 32)

    with pytest.raises(KeyError):
        RenderParams.from_dict({'pattern': 'checker'})
    with pytest.raises(ValueError):
        RenderParams.from_dict({'pattern': 'checker', 'room': 'black', 'zoom': 3})


def test_cancellation_token():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(headless_pipeline.RenderCancelled):
        token.raise_if_cancelled()


def test_canvas_center_is_never_a_blend(small_config):
    params = _checker_params(colors={'cell-a': '#000000', 'cell-b': '#ffffff'}, repeat_factor=4)
    image = asyncio.run(_pipeline(small_config).rebuild(params))['result']
    center = tuple(image[16, 16])
    assert center in ((0, 0, 0, 255), (255, 255, 255, 255))
    assert tuple(image[17, 17]) == center
