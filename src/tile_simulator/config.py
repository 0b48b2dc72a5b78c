import os

import yaml

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.yaml')


def load_config(config_path=None):
    """Load configuration settings from a YAML file."""
    with open(config_path or DEFAULT_CONFIG_PATH, 'r') as file:
        config = yaml.safe_load(file)
    return config or {}

def get_render_config(config):
    """Get render configuration settings."""
    return config.get('render', {})

def get_room_config(config, room_name):
    """Get the calibration of one room asset."""
    rooms = config.get('rooms', {})
    if room_name not in rooms:
        raise KeyError(f"Unknown room '{room_name}'. Available: {sorted(rooms)}")
    return rooms[room_name]

def get_catalog_config(config):
    """Get catalog configuration settings."""
    return config.get('catalog', {})

def resolve_asset_path(path, base_dir=None):
    """Resolve a relative asset path against base_dir (default: working directory)."""
    if path is None or '://' in path or path.startswith('data:') or os.path.isabs(path):
        return path
    return os.path.join(base_dir or os.getcwd(), path)
