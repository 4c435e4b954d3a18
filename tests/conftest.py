import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))


def square(lon, lat, size):
    """Closed-enough square ring with its south-west corner at (lon, lat)."""
    return [(lon, lat), (lon + size, lat), (lon + size, lat + size), (lon, lat + size)]


def overpass_way(element_id, lon, lat, size, tags):
    return {
        "type": "way",
        "id": element_id,
        "tags": tags,
        "bounds": {"minlat": lat, "minlon": lon, "maxlat": lat + size, "maxlon": lon + size},
        "geometry": [{"lat": y, "lon": x} for x, y in square(lon, lat, size) + [(lon, lat)]],
    }


@pytest.fixture
def make_way():
    return overpass_way


@pytest.fixture
def make_square():
    return square
