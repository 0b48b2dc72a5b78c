import importlib.util
import os
import threading

import cv2
import numpy as np
import pytest

APP_PATH = os.path.join(os.path.dirname(__file__), '..', 'frontend', 'app.py')


def _load_app_module():
    spec = importlib.util.spec_from_file_location('tile_simulator_frontend_app', APP_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def client(small_config, tmp_path):
    app = _load_app_module().create_app(config=small_config, base_dir=str(tmp_path))
    app.config['TESTING'] = True
    return app.test_client()


def test_catalog(client):
    response = client.get('/api/catalog')
    assert response.status_code == 200
    payload = response.get_json()
    assert [p['id'] for p in payload['patterns']] == ['checker']
    assert [c['id'] for c in payload['colors']] == ['red', 'blue']
    assert payload['rooms'] == ['black', 'black_scene', 'missing']


def test_regions(client):
    response = client.get('/api/regions?pattern=checker')
    assert response.status_code == 200
    payload = response.get_json()
    assert payload['parsed'] is True
    assert payload['regions'] == ['cell-a', 'cell-b']
    assert payload['zones'] == [{'id': 'cell-a', 'label': 'A'}, {'id': 'cell-b', 'label': 'B'}]

    assert client.get('/api/regions').status_code == 400


def test_hit_test(client):
    client.get('/api/regions?pattern=checker')
    response = client.post('/api/hit-test', json={'x': 2, 'y': 2, 'size': [16, 16]})
    assert response.get_json() == {'region': 'cell-a'}

    response = client.post('/api/hit-test', json={'x': 12, 'y': 2, 'size': [16, 16], 'rotation_deg': 90})
    assert response.get_json() == {'region': 'cell-a'}

    assert client.post('/api/hit-test', json={'x': 2}).status_code == 400


def test_hit_test_waits_for_a_running_render(client, monkeypatch):
    app = client.application
    pipeline = app.extensions['tile_simulator']
    client.get('/api/regions?pattern=checker')

    started, release = threading.Event(), threading.Event()
    real_rebuild = pipeline.rebuild

    async def held_rebuild(params):
        started.set()
        release.wait(5)
        return await real_rebuild(params)

    monkeypatch.setattr(pipeline, 'rebuild', held_rebuild)
    render = threading.Thread(target=app.test_client().post, args=('/api/render',),
                              kwargs={'json': {'pattern': 'checker', 'room': 'black'}})
    render.start()
    assert started.wait(5)

    answers = []
    hit = threading.Thread(target=lambda: answers.append(
        app.test_client().post('/api/hit-test', json={'x': 2, 'y': 2, 'size': [16, 16]}).get_json()))
    hit.start()
    hit.join(0.2)
    assert hit.is_alive()

    release.set()
    render.join(5)
    hit.join(5)
    assert answers == [{'region': 'cell-a'}]


def test_render_returns_png(client):
    response = client.post('/api/render', json={
        'pattern': 'checker', 'room': 'black',
        'colors': {'cell-a': 'red', 'cell-b': 'blue'},
    })
    assert response.status_code == 200
    assert response.mimetype == 'image/png'
    assert response.headers['X-Render-Warnings'] == '0'

    image = cv2.imdecode(np.frombuffer(response.data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    assert image.shape == (32, 32, 4)
    assert tuple(image[2, 2]) == (0, 0, 255, 255)
    assert tuple(image[2, 10]) == (255, 0, 0, 255)


def test_export_is_a_download(client):
    response = client.post('/api/export', json={'pattern': 'checker', 'room': 'missing'})
    assert response.status_code == 200
    assert 'attachment' in response.headers['Content-Disposition']
    assert 'tile-simulator.png' in response.headers['Content-Disposition']
    assert response.headers['X-Render-Warnings'] == '1'


def test_render_errors(client):
    assert client.post('/api/render', data='nope', content_type='text/plain').status_code == 400
    assert client.post('/api/render', json={'pattern': 'checker'}).status_code == 400

    response = client.post('/api/render', json={'pattern': 'checker', 'room': 'attic'})
    assert response.status_code == 404
    assert response.get_json()['kind'] == 'invalid_params'

    response = client.post('/api/render', json={'pattern': 'checker', 'room': 'black', 'zoom': 2})
    assert response.status_code == 400

    response = client.post('/api/render', json={'pattern': 'checker', 'room': 'black', 'rotation_deg': 30})
    assert response.status_code == 400
