"""
SVG Geometry
============
Turns SVG geometry attributes into flattened polygons and rasterizes them.

Key Features:
- Path data parser (M L H V C S Q T A Z, absolute and relative)
- Transform attribute parser (matrix, translate, scale, rotate, skewX, skewY)
- Sub-pixel polygon fill through cv2.fillPoly, sampled at pixel centers
- Point-in-region test through cv2.pointPolygonTest under the same fill rules
"""

import math
import re
from typing import List, Sequence, Tuple

import cv2
import numpy as np

CUBIC_SEGMENTS = 16
QUADRATIC_SEGMENTS = 12
ARC_STEP_RAD = math.pi / 16

_NUMBER = r'[-+]?(?:\d*\.\d+|\d+\.?)(?:[eE][-+]?\d+)?'
_NUMBER_RE = re.compile(_NUMBER)
_TRANSFORM_RE = re.compile(r'(matrix|translate|scale|rotate|skewX|skewY)\s*\(([^)]*)\)')
_PATH_TOKEN_RE = re.compile(r'([MmLlHhVvCcSsQqTtAaZz])|(' + _NUMBER + r')|([\s,]+)')


def parse_numbers(text: str) -> List[float]:
    """Parse every number found in a string such as a points or viewBox attribute."""
    return [float(n) for n in _NUMBER_RE.findall(text or '')]


# ─── Transforms ───────────────────────────────────────────────────────────────

def parse_transform(text: str) -> np.ndarray:
    """
    Parse an SVG transform attribute into a 3x3 affine matrix

    Functions compose left to right, as SVG defines them.
    """
    matrix = np.eye(3)
    for name, args in _TRANSFORM_RE.findall(text or ''):
        values = parse_numbers(args)
        step = np.eye(3)
        if name == 'matrix' and len(values) == 6:
            a, b, c, d, e, f = values
            step = np.array([[a, c, e], [b, d, f], [0, 0, 1]], dtype=np.float64)
        elif name == 'translate' and values:
            step[0, 2] = values[0]
            step[1, 2] = values[1] if len(values) > 1 else 0.0
        elif name == 'scale' and values:
            step[0, 0] = values[0]
            step[1, 1] = values[1] if len(values) > 1 else values[0]
        elif name == 'rotate' and values:
            angle = math.radians(values[0])
            cos_a, sin_a = math.cos(angle), math.sin(angle)
            step = np.array([[cos_a, -sin_a, 0], [sin_a, cos_a, 0], [0, 0, 1]])
            if len(values) >= 3:
                cx, cy = values[1], values[2]
                to_origin = np.array([[1, 0, -cx], [0, 1, -cy], [0, 0, 1]], dtype=np.float64)
                back = np.array([[1, 0, cx], [0, 1, cy], [0, 0, 1]], dtype=np.float64)
                step = back @ step @ to_origin
        elif name == 'skewX' and values:
            step[0, 1] = math.tan(math.radians(values[0]))
        elif name == 'skewY' and values:
            step[1, 0] = math.tan(math.radians(values[0]))
        matrix = matrix @ step
    return matrix


def apply_transform(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Apply a 3x3 affine matrix to an (N, 2) point array."""
    if points.size == 0:
        return points
    return points @ matrix[:2, :2].T + matrix[:2, 2]


# ─── Shapes ───────────────────────────────────────────────────────────────────

def rect_polygon(x: float, y: float, width: float, height: float) -> List[np.ndarray]:
    if width <= 0 or height <= 0:
        return []
    return [np.array([[x, y], [x + width, y], [x + width, y + height], [x, y + height]],
                     dtype=np.float64)]


def points_polygon(text: str) -> List[np.ndarray]:
    values = parse_numbers(text)
    if len(values) < 6:
        return []
    return [np.array(values[:len(values) // 2 * 2], dtype=np.float64).reshape(-1, 2)]


def _tokenize_path(d: str):
    tokens = []
    position = 0
    while position < len(d):
        match = _PATH_TOKEN_RE.match(d, position)
        if match is None:
            raise ValueError(f"Invalid path data near: {d[position:position + 20]!r}")
        command, number, _ = match.groups()
        if command:
            tokens.append(command)
        elif number:
            tokens.append(number)
        position = match.end()
    return tokens


def _arc_points(p0, rx, ry, phi_deg, large_arc, sweep, p1) -> List[Tuple[float, float]]:
    """Flatten an endpoint-parameterized elliptical arc (SVG implementation notes F.6.5)."""
    x0, y0 = p0
    x1, y1 = p1
    if (x0, y0) == (x1, y1):
        return []
    rx, ry = abs(rx), abs(ry)
    if rx == 0 or ry == 0:
        return [(x1, y1)]

    phi = math.radians(phi_deg)
    cos_p, sin_p = math.cos(phi), math.sin(phi)
    dx2, dy2 = (x0 - x1) / 2.0, (y0 - y1) / 2.0
    x1p = cos_p * dx2 + sin_p * dy2
    y1p = -sin_p * dx2 + cos_p * dy2

    lam = (x1p ** 2) / (rx ** 2) + (y1p ** 2) / (ry ** 2)
    if lam > 1:
        rx *= math.sqrt(lam)
        ry *= math.sqrt(lam)

    num = rx ** 2 * ry ** 2 - rx ** 2 * y1p ** 2 - ry ** 2 * x1p ** 2
    den = rx ** 2 * y1p ** 2 + ry ** 2 * x1p ** 2
    coef = math.sqrt(max(0.0, num / den)) if den else 0.0
    if large_arc == sweep:
        coef = -coef
    cxp = coef * rx * y1p / ry
    cyp = -coef * ry * x1p / rx
    cx = cos_p * cxp - sin_p * cyp + (x0 + x1) / 2.0
    cy = sin_p * cxp + cos_p * cyp + (y0 + y1) / 2.0

    def _angle(ux, uy, vx, vy):
        return math.atan2(ux * vy - uy * vx, ux * vx + uy * vy)

    ux, uy = (x1p - cxp) / rx, (y1p - cyp) / ry
    vx, vy = (-x1p - cxp) / rx, (-y1p - cyp) / ry
    theta1 = _angle(1.0, 0.0, ux, uy)
    dtheta = _angle(ux, uy, vx, vy)
    if not sweep and dtheta > 0:
        dtheta -= 2 * math.pi
    elif sweep and dtheta < 0:
        dtheta += 2 * math.pi

    steps = max(4, int(math.ceil(abs(dtheta) / ARC_STEP_RAD)))
    points = []
    for i in range(1, steps + 1):
        t = theta1 + dtheta * i / steps
        points.append((cx + rx * cos_p * math.cos(t) - ry * sin_p * math.sin(t),
                       cy + rx * sin_p * math.cos(t) + ry * cos_p * math.sin(t)))
    points[-1] = (x1, y1)
    return points


def _cubic(p0, c1, c2, p1, segments=CUBIC_SEGMENTS):
    t = np.linspace(0.0, 1.0, segments + 1)[1:, None]
    p0, c1, c2, p1 = (np.asarray(p, dtype=np.float64) for p in (p0, c1, c2, p1))
    pts = ((1 - t) ** 3) * p0 + 3 * ((1 - t) ** 2) * t * c1 + 3 * (1 - t) * (t ** 2) * c2 + (t ** 3) * p1
    return [tuple(p) for p in pts]


def _quadratic(p0, c, p1, segments=QUADRATIC_SEGMENTS):
    t = np.linspace(0.0, 1.0, segments + 1)[1:, None]
    p0, c, p1 = (np.asarray(p, dtype=np.float64) for p in (p0, c, p1))
    pts = ((1 - t) ** 2) * p0 + 2 * (1 - t) * t * c + (t ** 2) * p1
    return [tuple(p) for p in pts]


def path_polygons(d: str) -> List[np.ndarray]:
    """
    Flatten SVG path data into closed polygons (one per subpath)

    Args:
        d: Path data string

    Returns:
        List of (N, 2) float arrays in user units

    Raises:
        ValueError: on malformed path data
    """
    tokens = _tokenize_path(d or '')
    subpaths: List[List[Tuple[float, float]]] = []
    current: List[Tuple[float, float]] = []
    pos = (0.0, 0.0)
    start = (0.0, 0.0)
    last_control = None
    last_command = ''
    command = None
    i = 0

    def take(count):
        nonlocal i
        if i + count > len(tokens) or any(not _NUMBER_RE.fullmatch(t) for t in tokens[i:i + count]):
            raise ValueError(f"Path command {command!r} is missing arguments")
        values = [float(t) for t in tokens[i:i + count]]
        i += count
        return values

    def take_flag():
        nonlocal i
        token = tokens[i] if i < len(tokens) else ''
        if not token or token[0] not in '01':
            raise ValueError("Invalid arc flag")
        if len(token) > 1:
            # Flags may be written without separators ("a5 5 0 011 1")
            tokens[i] = token[1:]
        else:
            i += 1
        return token[0] == '1'

    while i < len(tokens):
        token = tokens[i]
        if token.isalpha():
            command = token
            i += 1
            if command in 'Zz':
                if current:
                    subpaths.append(current)
                current = []
                pos = start
                last_control = None
                last_command = command
                continue
        elif command is None:
            raise ValueError("Path data must start with a command")

        relative = command.islower()
        op = command.upper()
        ox, oy = pos if relative else (0.0, 0.0)

        if op == 'M':
            x, y = take(2)
            if current:
                subpaths.append(current)
            pos = (ox + x, oy + y)
            start = pos
            current = [pos]
            # Subsequent pairs are implicit line-to commands
            command = 'l' if relative else 'L'
            last_control = None
        elif op == 'L':
            x, y = take(2)
            pos = (ox + x, oy + y)
            current.append(pos)
            last_control = None
        elif op == 'H':
            (x,) = take(1)
            pos = (ox + x, pos[1])
            current.append(pos)
            last_control = None
        elif op == 'V':
            (y,) = take(1)
            pos = (pos[0], oy + y)
            current.append(pos)
            last_control = None
        elif op == 'C':
            x1, y1, x2, y2, x, y = take(6)
            c1, c2, end = (ox + x1, oy + y1), (ox + x2, oy + y2), (ox + x, oy + y)
            current.extend(_cubic(pos, c1, c2, end))
            last_control, pos = c2, end
        elif op == 'S':
            x2, y2, x, y = take(4)
            if last_command.upper() in ('C', 'S') and last_control is not None:
                c1 = (2 * pos[0] - last_control[0], 2 * pos[1] - last_control[1])
            else:
                c1 = pos
            c2, end = (ox + x2, oy + y2), (ox + x, oy + y)
            current.extend(_cubic(pos, c1, c2, end))
            last_control, pos = c2, end
        elif op == 'Q':
            x1, y1, x, y = take(4)
            c, end = (ox + x1, oy + y1), (ox + x, oy + y)
            current.extend(_quadratic(pos, c, end))
            last_control, pos = c, end
        elif op == 'T':
            x, y = take(2)
            if last_command.upper() in ('Q', 'T') and last_control is not None:
                c = (2 * pos[0] - last_control[0], 2 * pos[1] - last_control[1])
            else:
                c = pos
            end = (ox + x, oy + y)
            current.extend(_quadratic(pos, c, end))
            last_control, pos = c, end
        elif op == 'A':
            rx, ry, phi = take(3)
            large_arc = take_flag()
            sweep = take_flag()
            x, y = take(2)
            end = (ox + x, oy + y)
            current.extend(_arc_points(pos, rx, ry, phi, large_arc, sweep, end))
            last_control, pos = None, end
        else:
            raise ValueError(f"Unsupported path command {command!r}")

        if not current:
            current = [pos]
        last_command = command

    if current:
        subpaths.append(current)

    return [np.array(sp, dtype=np.float64) for sp in subpaths if len(sp) >= 3]


# ─── Rasterization ────────────────────────────────────────────────────────────

FIXED_SHIFT = 8
_FIXED_ONE = 1 << FIXED_SHIFT
# Fixed-point vertices must stay inside int32
_COORD_LIMIT = float(1 << 20)


def signed_area(polygon: np.ndarray) -> float:
    """Shoelace area, positive for clockwise winding in y-down coordinates."""
    polygon = np.asarray(polygon, dtype=np.float64)
    x, y = polygon[:, 0], polygon[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def _subpath_mask(polygon: np.ndarray, height: int, width: int) -> np.ndarray:
    # Vertices shift by half a pixel so OpenCV's integer grid lands on pixel centers
    points = np.nan_to_num(np.asarray(polygon, dtype=np.float64) - 0.5)
    points = np.clip(points, -_COORD_LIMIT, _COORD_LIMIT)
    fixed = np.round(points * _FIXED_ONE).astype(np.int32).reshape(-1, 1, 2)
    mask = np.zeros((height, width), dtype=np.uint8)
    cv2.fillPoly(mask, [fixed], 1, lineType=cv2.LINE_8, shift=FIXED_SHIFT)
    return mask


def fill_mask(polygons: Sequence[np.ndarray], height: int, width: int,
              fill_rule: str = 'nonzero') -> np.ndarray:
    """
    Rasterize polygons into a boolean mask, sampling at pixel centers

    Each subpath goes through cv2.fillPoly with sub-pixel vertices. A pixel
    whose center lies on an outline counts as covered, so shapes sharing an
    edge both cover it and the one painted last owns it. Subpaths combine
    under the fill rule: winding sum for 'nonzero', parity for 'evenodd'.

    Args:
        polygons: Polygons in pixel coordinates
        height: Mask height
        width: Mask width
        fill_rule: 'nonzero' or 'evenodd'

    Returns:
        Boolean mask (height x width)
    """
    subpaths = [p for p in polygons if len(p) >= 3]
    if not subpaths or height <= 0 or width <= 0:
        return np.zeros((max(height, 0), max(width, 0)), dtype=bool)

    if len(subpaths) == 1:
        return _subpath_mask(subpaths[0], height, width).astype(bool)

    if fill_rule == 'evenodd':
        parity = np.zeros((height, width), dtype=np.uint8)
        for polygon in subpaths:
            parity ^= _subpath_mask(polygon, height, width)
        return parity.astype(bool)

    winding = np.zeros((height, width), dtype=np.int32)
    for polygon in subpaths:
        direction = 1 if signed_area(polygon) >= 0 else -1
        winding += direction * _subpath_mask(polygon, height, width).astype(np.int32)
    return winding != 0


def contains_point(polygons: Sequence[np.ndarray], x: float, y: float,
                   fill_rule: str = 'nonzero') -> bool:
    """Point-in-region test under the same rules as fill_mask, outlines included."""
    crossings = 0
    winding = 0
    for polygon in polygons:
        if len(polygon) < 3:
            continue
        contour = np.asarray(polygon, dtype=np.float32).reshape(-1, 1, 2)
        if cv2.pointPolygonTest(contour, (float(x), float(y)), False) >= 0:
            crossings += 1
            winding += 1 if signed_area(polygon) >= 0 else -1
    if fill_rule == 'evenodd':
        return crossings % 2 == 1
    return winding != 0
