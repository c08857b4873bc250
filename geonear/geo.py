'''
Great-circle math on a spherical earth.

All functions accept plain floats or numpy arrays so the same formula serves
both per-result annotation and the vectorised linear scan.
'''

from __future__ import annotations

import math

import numpy as np

from geonear.CONSTANTS import EARTH_RADIUS_M


def haversine_m(lat1, lon1, lat2, lon2):
    '''
    Haversine distance in metres between points given in decimal degrees.

    Inputs:
        lat1, lon1: query point (floats or arrays)
        lat2, lon2: candidate point(s) (floats or arrays)
    Returns:
        np.float64 or np.ndarray - distance in metres, not rounded
    '''
    phi1 = np.radians(lat1)
    phi2 = np.radians(lat2)
    dphi = np.radians(np.subtract(lat2, lat1))
    dlambda = np.radians(np.subtract(lon2, lon1))

    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlambda / 2) ** 2
    # float drift can push a just past 1 for antipodal points
    a = np.clip(a, 0.0, 1.0)
    return 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def round_meters(distance):
    '''
    Round a distance half-up to a whole metre.

    Example:
        round_meters(12.5) -> 13.0
    '''
    return float(math.floor(float(distance) + 0.5))


def clamp_latitude(lat: float) -> float:
    if not math.isfinite(lat):
        return 0.0
    return min(max(lat, -90.0), 90.0)


def normalize_longitude(lon: float) -> float:
    '''
    Wrap a longitude into [-180, 180).

    Example:
        normalize_longitude(190) -> -170.0
        normalize_longitude(180) -> -180.0
    '''
    if not math.isfinite(lon):
        return 0.0
    return ((lon + 180.0) % 360.0) - 180.0


def clamp_limit(limit, maximum: int, default: int = 1) -> int:
    '''
    Coerce a requested result count into [1, maximum].

    None, non-numeric and non-positive values fall back to `default`;
    fractional values are floored first.
    '''
    try:
        value = math.floor(float(limit))
    except (TypeError, ValueError, OverflowError):
        return default
    if value < 1:
        return default
    return min(value, maximum)
