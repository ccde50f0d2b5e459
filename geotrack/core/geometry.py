from dataclasses import dataclass
from typing import Sequence, Union

NO_FIX_SENTINEL = 255


@dataclass(frozen=True)
class InvalidFix:
    pass


@dataclass(frozen=True)
class ValidFix:
    lat: float
    lon: float


Fix = Union[InvalidFix, ValidFix]


def fix_from(la: float, lg: float) -> Fix:
    """Classify a coordinate pair.

    Devices report 255 in both coordinates when they have no GNSS fix. A
    pair where either side carries the sentinel is never a usable position.
    """
    if la is None or lg is None:
        return InvalidFix()
    if la == NO_FIX_SENTINEL or lg == NO_FIX_SENTINEL:
        return InvalidFix()
    return ValidFix(lat=la, lon=lg)


def point_in_polygon(point: Sequence[float], polygon: Sequence[Sequence[float]]) -> bool:
    """Ray casting containment test, odd crossings means inside.

    The ring is treated as closed: vertex ``j`` starts at the last vertex so
    the edge from last to first is checked without repeating a vertex.
    """
    x, y = point[0], point[1]
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside
