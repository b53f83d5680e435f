# distances entre points représentés par des dimensions nommées
# (dict, pandas Series...) ; toutes les mesures sont interchangeables
import math
from typing import Callable, Mapping, Union

from .errors import InputValidationError

Point = Mapping[str, float]
Metric = Callable[[Point, Point], float]

EARTH_RADIUS_KM = 6371.0088


def euclidean_distance(a: Point, b: Point) -> float:
    """
    Euclidean distance over the dimension names of `a`.

    Both points are expected to share the same dimension names; this is
    not checked here.
    """
    return math.sqrt(sum((b[key] - value) ** 2 for key, value in a.items()))


def haversine_distance(a: Point, b: Point) -> float:
    """
    Great-circle distance in kilometres between two points exposing
    'latitude' and 'longitude' in degrees.
    """
    lat1 = math.radians(a['latitude'])
    lat2 = math.radians(b['latitude'])
    d_lat = lat2 - lat1
    d_lon = math.radians(b['longitude'] - a['longitude'])

    h = math.sin(d_lat / 2) ** 2 + \
        math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # clamp: rounding can push h slightly above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


METRICS = {
    'euclidean': euclidean_distance,
    'haversine': haversine_distance,
}


def resolve_metric(metric: Union[str, Metric]) -> Metric:
    """
    Returns the distance function for a registered name, or the callable itself.
    """
    if callable(metric):
        return metric
    try:
        return METRICS[metric]
    except KeyError:
        raise InputValidationError(
            f"Unknown metric '{metric}'. Available: {', '.join(sorted(METRICS))}")
