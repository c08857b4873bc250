import math
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from structlog.testing import capture_logs

from geonear.data_prep import load_records
from geonear.errors import ConfigurationError, DatasetReadError, LoadError
from geonear.nearest import NearestIndex, build_ball_tree
from geonear.records import IndexState


def _independent_haversine(lat1, lon1, lat2, lon2):
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * 6371000 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _failing_tree_factory(*_args, **_kwargs):
    raise MemoryError("no room for a tree")


def _summary(results):
    return [(r.record.id, r.distance_meters) for r in results]


QUERIES = [(0.0, 0.0), (48.85, 2.35), (-33.9, 151.2), (64.1, -21.9), (10.0, 179.9), (-5.0, -179.5)]


def test_nearest_scenario_alpha_beta(sample_csv):
    idx = NearestIndex([sample_csv])

    results = idx.find_nearest(1, 1, 2)

    assert [r.record.name for r in results] == ["Alpha", "Beta"]
    assert results[0].distance_meters == 0.0
    gamma_distance = _independent_haversine(1, 1, -9.5, 121.0)
    assert 0 < results[1].distance_meters < gamma_distance


def test_linear_fallback_finds_gamma(sample_csv):
    idx = NearestIndex([sample_csv], tree_factory=_failing_tree_factory)

    (result,) = idx.find_nearest(-9.5, 121, 1)

    assert result.record.name == "Gamma"
    assert idx.state is IndexState.READY_LINEAR


def test_empty_dataset_returns_no_results(write_csv):
    path = write_csv("id,name,latitude,longitude\nbad,Bad,,\n")
    idx = NearestIndex([path])

    assert idx.find_nearest(1, 1, 5) == []
    stats = idx.get_stats()
    assert stats.total_rows_indexed == 0
    assert stats.total_rows_seen == 1
    assert stats.total_rows_skipped == 1


def test_stats_are_none_until_built(sample_csv):
    idx = NearestIndex([sample_csv])

    assert idx.get_stats() is None
    assert idx.state is IndexState.UNBUILT

    idx.ensure_ready()
    stats = idx.get_stats()

    assert idx.state is IndexState.READY_TREE
    assert stats.source_path == str(sample_csv.resolve())
    assert stats.total_rows_seen == 3
    assert stats.total_rows_indexed == 3
    assert stats.total_rows_skipped == 0
    assert stats.using_tree_index is True
    assert stats.build_duration_millis >= 0
    assert stats.built_at.tzinfo is not None


def test_concurrent_ensure_ready_builds_once(sample_csv):
    load_calls = []
    tree_calls = []
    release = threading.Event()

    def slow_loader(path, **kwargs):
        load_calls.append(path)
        release.wait(timeout=5)
        return load_records(path, **kwargs)

    def counting_tree_factory(coords, **kwargs):
        tree_calls.append(len(coords))
        return build_ball_tree(coords, **kwargs)

    idx = NearestIndex([sample_csv], loader=slow_loader, tree_factory=counting_tree_factory)

    with ThreadPoolExecutor(max_workers=16) as pool:
        futures = [pool.submit(idx.ensure_ready) for _ in range(16)]
        release.set()
        for future in futures:
            future.result()

    assert len(load_calls) == 1
    assert tree_calls == [3]
    assert idx.state is IndexState.READY_TREE


def test_queries_during_build_wait_for_it(sample_csv):
    started = threading.Event()
    release = threading.Event()

    def gated_loader(path, **kwargs):
        started.set()
        release.wait(timeout=5)
        return load_records(path, **kwargs)

    idx = NearestIndex([sample_csv], loader=gated_loader)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(idx.find_nearest, 1, 1, 2) for _ in range(8)]
        assert started.wait(timeout=5)
        assert idx.state is IndexState.BUILDING
        assert idx.get_stats() is None
        release.set()
        outcomes = [_summary(f.result()) for f in futures]

    assert all(outcome == outcomes[0] for outcome in outcomes)
    assert [name for name, _ in outcomes[0]] == ["alph1234", "beta1234"]


def test_results_are_deterministic(random_csv):
    idx = NearestIndex([random_csv])

    first = _summary(idx.find_nearest(12.3, 45.6, 20))

    for _ in range(5):
        assert _summary(idx.find_nearest(12.3, 45.6, 20)) == first


@pytest.mark.parametrize("lat, lng", QUERIES)
def test_distances_match_haversine_and_are_sorted(random_csv, lat, lng):
    idx = NearestIndex([random_csv])

    results = idx.find_nearest(lat, lng, 25)

    for r in results:
        expected = _independent_haversine(lat, lng, r.record.latitude, r.record.longitude)
        assert abs(r.distance_meters - expected) <= 0.5 + 1e-6
    distances = [r.distance_meters for r in results]
    assert distances == sorted(distances)


def test_tree_results_are_the_true_nearest(random_csv):
    idx = NearestIndex([random_csv])
    records = load_records(random_csv).records

    results = idx.find_nearest(20.0, -40.0, 10)

    brute = sorted(
        records,
        key=lambda r: _independent_haversine(20.0, -40.0, r.latitude, r.longitude),
    )[:10]
    assert [r.record.id for r in results] == [r.id for r in brute]


@pytest.mark.parametrize(
    "limit, expected",
    [(1, 1), (7, 7), (50, 50), (51, 50), (10_000, 50), (0, 1), (-4, 1), (None, 1)],
)
def test_result_count_is_bounded(random_csv, limit, expected):
    idx = NearestIndex([random_csv])

    assert len(idx.find_nearest(0, 0, limit)) == expected


def test_result_count_never_exceeds_indexed_rows(sample_csv):
    idx = NearestIndex([sample_csv])

    assert len(idx.find_nearest(0, 0, 40)) == 3


def test_out_of_range_query_is_normalized(sample_csv):
    idx = NearestIndex([sample_csv])

    results = idx.find_nearest(95, 190, 1)

    assert len(results) == 1
    (at_pole,) = idx.find_nearest(90, -170, 1)
    assert results[0].record.id == at_pole.record.id
    assert results[0].distance_meters == at_pole.distance_meters


def test_longitude_wraps_across_antimeridian(write_csv):
    path = write_csv("id,latitude,longitude\neast,0,170\nwest,0,-170\n")
    idx = NearestIndex([path])

    (result,) = idx.find_nearest(0, 190, 1)

    assert result.record.id == "west"
    assert result.distance_meters == 0.0


@pytest.mark.parametrize("lat, lng", QUERIES)
def test_linear_fallback_matches_tree(random_csv, lat, lng):
    tree_idx = NearestIndex([random_csv])
    linear_idx = NearestIndex([random_csv], tree_factory=_failing_tree_factory)

    assert _summary(linear_idx.find_nearest(lat, lng, 15)) == _summary(tree_idx.find_nearest(lat, lng, 15))
    assert linear_idx.get_stats().using_tree_index is False
    assert tree_idx.get_stats().using_tree_index is True


def test_tree_failure_is_logged_as_warning(sample_csv):
    idx = NearestIndex([sample_csv], tree_factory=_failing_tree_factory)

    with capture_logs() as logs:
        idx.ensure_ready()

    warnings = [e for e in logs if e["event"] == "spatial_index_build_failed"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert "no room for a tree" in warnings[0]["error"]


def test_missing_source_is_cached_failure(tmp_path):
    calls = []

    def loader(path, **kwargs):
        calls.append(path)
        return load_records(path, **kwargs)

    idx = NearestIndex([tmp_path / "nope.csv"], loader=loader)

    with pytest.raises(ConfigurationError) as first:
        idx.find_nearest(1, 1)
    with pytest.raises(ConfigurationError) as second:
        idx.find_nearest(1, 1)

    assert first.value is second.value
    assert calls == []
    assert idx.state is IndexState.FAILED
    stats = idx.get_stats()
    assert stats.source_path == ""
    assert stats.using_tree_index is False


def test_read_failure_is_not_retried(sample_csv):
    calls = []

    def broken_loader(path, **kwargs):
        calls.append(path)
        raise DatasetReadError(f"lost {path}")

    idx = NearestIndex([sample_csv], loader=broken_loader)

    for _ in range(3):
        with pytest.raises(DatasetReadError):
            idx.ensure_ready()

    assert len(calls) == 1
    assert idx.get_stats().source_path == str(sample_csv.resolve())


def test_unexpected_loader_error_is_wrapped(sample_csv):
    def exploding_loader(path, **kwargs):
        raise RuntimeError("disk on fire")

    idx = NearestIndex([sample_csv], loader=exploding_loader)

    with pytest.raises(LoadError) as excinfo:
        idx.find_nearest(0, 0)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.error_code == "LOAD_ERROR"


def test_override_path_is_used(sample_csv, tmp_path):
    idx = NearestIndex([tmp_path / "default.csv"], override=sample_csv)

    (result,) = idx.find_nearest(1, 1)

    assert result.record.name == "Alpha"


def test_tied_distances_keep_dataset_order(write_csv):
    path = write_csv("id,latitude,longitude\nsecond,0,1\nfirst,0,-1\ntwin,0,1\n")
    tree_idx = NearestIndex([path])
    linear_idx = NearestIndex([path], tree_factory=_failing_tree_factory)

    expected = ["second", "first", "twin"]
    assert [r.record.id for r in tree_idx.find_nearest(0, 0, 3)] == expected
    assert [r.record.id for r in linear_idx.find_nearest(0, 0, 3)] == expected


def test_ties_at_the_cutoff_match_linear_scan(write_csv):
    rows = "\n".join(f"d{i:03d},10,10" for i in range(200))
    path = write_csv("id,latitude,longitude\n" + rows + "\n")
    tree_idx = NearestIndex([path])
    linear_idx = NearestIndex([path], tree_factory=_failing_tree_factory)

    tree_ids = [r.record.id for r in tree_idx.find_nearest(10, 10, 3)]
    linear_ids = [r.record.id for r in linear_idx.find_nearest(10, 10, 3)]

    assert tree_ids == ["d000", "d001", "d002"]
    assert linear_ids == tree_ids
    assert tree_idx.state is IndexState.READY_TREE


def test_ties_at_the_cutoff_behind_a_closer_point(write_csv):
    rows = ["near,0,0"] + [f"ring{i:02d},0,1" for i in range(40)]
    path = write_csv("id,latitude,longitude\n" + "\n".join(rows) + "\n")
    tree_idx = NearestIndex([path])
    linear_idx = NearestIndex([path], tree_factory=_failing_tree_factory)

    expected = ["near", "ring00", "ring01", "ring02"]
    assert [r.record.id for r in tree_idx.find_nearest(0, 0, 4)] == expected
    assert [r.record.id for r in linear_idx.find_nearest(0, 0, 4)] == expected


def test_each_linear_query_logs_a_warning(sample_csv):
    idx = NearestIndex([sample_csv], tree_factory=_failing_tree_factory)
    idx.ensure_ready()

    with capture_logs() as logs:
        idx.find_nearest(1, 1)
        idx.find_nearest(2, 2)

    fallbacks = [e for e in logs if e["event"] == "spatial_index_unavailable"]
    assert len(fallbacks) == 2
    assert all(e["log_level"] == "warning" for e in fallbacks)


def test_tree_queries_do_not_log_fallback(sample_csv):
    idx = NearestIndex([sample_csv])
    idx.ensure_ready()

    with capture_logs() as logs:
        idx.find_nearest(1, 1)

    assert not [e for e in logs if e["event"] == "spatial_index_unavailable"]
