"""
Tile Simulator - Web Application
================================
Flask API over the headless pipeline:
- Catalog of patterns, colors and sizes
- Region listing and click-to-region lookup for a pattern
- Rendering a composite as PNG (inline or as a download)
"""

import asyncio
import io
import os
import sys
import threading

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

# Add parent src to path for engine imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
from tile_simulator.config import load_config
from tile_simulator.headless_pipeline import HeadlessPipeline, RenderParams

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def _status_code(result):
    if result['status'] == 'cancelled':
        return 409
    if result['kind'] == 'invalid_params' and 'Unknown room' in result['message']:
        return 404
    return 400


def create_app(config=None, base_dir=None):
    """
    Create the Flask application

    Args:
        config: Parsed configuration (default: packaged config.yaml)
        base_dir: Directory asset paths are relative to (default: repository root)
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024
    CORS(app)

    pipeline = HeadlessPipeline(config=config if config is not None else load_config(),
                                base_dir=base_dir or BASE_DIR)
    # One render at a time: the pipeline's scene and color state are shared
    render_lock = threading.Lock()
    app.extensions['tile_simulator'] = pipeline

    def _render(data):
        params = RenderParams.from_dict(data)
        with render_lock:
            return asyncio.run(pipeline.rebuild(params))

    def _png_response(as_attachment):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'Expected a JSON object'}), 400
        for field in ('pattern', 'room'):
            if field not in data:
                return jsonify({'error': f'Missing required field: {field}'}), 400

        try:
            result = _render(data)
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            import traceback
            traceback.print_exc()
            return jsonify({'error': str(e)}), 500

        if not result['success']:
            return jsonify({'error': result['message'], 'kind': result['kind']}), _status_code(result)

        response = send_file(
            io.BytesIO(result['png']),
            mimetype='image/png',
            as_attachment=as_attachment,
            download_name='tile-simulator.png'
        )
        response.headers['X-Render-Warnings'] = str(len(result['warnings']))
        return response

    @app.route('/api/catalog')
    def api_catalog():
        """Patterns, colors, sizes and rooms"""
        payload = pipeline.catalog.to_dict()
        payload['rooms'] = sorted(pipeline.config.get('rooms', {}))
        return jsonify(payload)

    @app.route('/api/regions')
    def api_regions():
        """Region ids of a pattern (loads it and makes it active)"""
        pattern = request.args.get('pattern')
        if not pattern:
            return jsonify({'error': 'Missing required parameter: pattern'}), 400

        try:
            with render_lock:
                warnings = []
                document = asyncio.run(pipeline.load_pattern(pattern, warnings))
        except Exception as e:
            import traceback
            traceback.print_exc()
            return jsonify({'error': str(e)}), 500

        descriptor = pipeline.catalog.find_pattern(pattern)
        return jsonify({
            'pattern': pattern,
            'parsed': document.is_parsed,
            'regions': list(document.region_ids),
            'zones': [{'id': z.id, 'label': z.label} for z in descriptor.zones] if descriptor else [],
            'colors': pipeline.colors.as_hex_dict(),
            'warnings': warnings,
        })

    @app.route('/api/hit-test', methods=['POST'])
    def api_hit_test():
        """Region under a click on the tile preview of the active pattern"""
        data = request.get_json(silent=True) or {}
        try:
            x, y = float(data['x']), float(data['y'])
            width, height = (int(v) for v in data['size'])
            rotation = float(data.get('rotation_deg', 0.0))
        except (KeyError, TypeError, ValueError):
            return jsonify({'error': 'Expected x, y and size [width, height]'}), 400

        with render_lock:
            region = pipeline.region_at((x, y), (width, height), rotation)
        return jsonify({'region': region})

    @app.route('/api/render', methods=['POST'])
    def api_render():
        """Render a composite and return it as PNG"""
        return _png_response(as_attachment=False)

    @app.route('/api/export', methods=['POST'])
    def api_export():
        """Render a composite and return it as a PNG download"""
        return _png_response(as_attachment=True)

    return app


if __name__ == '__main__':
    print("\n" + "=" * 60)
    print("🏠 TILE SIMULATOR - Web Application")
    print("=" * 60)
    print("\n🌐 Starting server...")
    print("   API at http://localhost:5000/api/catalog")
    print("=" * 60 + "\n")

    create_app().run(host='0.0.0.0', port=5000, debug=True)
