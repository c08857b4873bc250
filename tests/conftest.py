from pathlib import Path

import numpy as np
import pytest

from geonear.settings import get_settings

SAMPLE_CSV = Path(__file__).parent / "fixtures" / "locations-sample.csv"

HEADER = "id,name,level,latitude,longitude,iso639P3code,country_ids"


@pytest.fixture
def sample_csv() -> Path:
    return SAMPLE_CSV


@pytest.fixture
def write_csv(tmp_path: Path):
    def _write(text: str, name: str = "locations.csv") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def random_csv(write_csv):
    rng = np.random.default_rng(20240101)
    lats = rng.uniform(-80, 80, 500)
    lons = rng.uniform(-180, 180, 500)
    lines = [HEADER]
    for i, (lat, lon) in enumerate(zip(lats, lons)):
        lines.append(f"p{i:04d},Point {i},language,{lat:.6f},{lon:.6f},,")
    return write_csv("\n".join(lines) + "\n", name="random.csv")


@pytest.fixture
def clean_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
