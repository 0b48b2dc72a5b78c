"""
Error taxonomy for the tile simulator pipeline.

Stages raise these exceptions; the headless pipeline turns them into tagged
result dictionaries so one failing stage never takes the whole pipeline down.
"""


class TileSimulatorError(Exception):
    """Base class for pipeline errors"""
    kind = 'error'


class AssetLoadError(TileSimulatorError):
    """A vector or bitmap asset could not be fetched or decoded"""
    kind = 'asset_load'


class PatternParseError(TileSimulatorError):
    """A vector pattern source is not a valid SVG document"""
    kind = 'parse'


class UnsupportedSurfaceError(TileSimulatorError):
    """The destination drawing surface cannot be created"""
    kind = 'unsupported_surface'


class PixelReadbackError(TileSimulatorError):
    """Decoded pixel data cannot be read back for mask processing"""
    kind = 'pixel_readback'


class RenderCancelled(TileSimulatorError):
    """A newer rebuild superseded this one"""
    kind = 'cancelled'


def make_result(success, message, result=None, kind=None, **extra):
    """Build a tagged result dictionary."""
    payload = {
        'success': success,
        'kind': kind or ('ok' if success else 'error'),
        'message': message,
        'result': result,
    }
    payload.update(extra)
    return payload
