from datetime import datetime, timedelta, timezone

import pytest

from orchestrator.errors import NoMatchingResults, ResultsRootMissing
from orchestrator.result_locator import (
    create_trial_dir,
    extract_hostname,
    extract_path_suffix,
    list_result_dirs,
    locate,
    target_identifier,
    timestamp_key,
    trial_dir_name,
)


@pytest.mark.parametrize("url, expected", [
    ("https://example.com", "example.com"),
    ("https://example.com/", "example.com"),
    ("http://localhost:8080/app", "localhost_app"),
    ("https://shop.example.com/au/", "shop.example.com_au"),
    ("https://example.com/a/b?q=1", "example.com_a_b_q_1"),
    ("https://example.com/#frag", "example.com"),
])
def test_target_identifier(url, expected):
    assert target_identifier(url) == expected


def test_hostname_and_suffix_parts():
    assert extract_hostname("https://user.example.org:443/x") == "user.example.org"
    assert extract_path_suffix("https://example.org") == ""
    assert extract_path_suffix("https://example.org/docs/v2") == "_docs_v2"


def test_trial_dir_name_uses_utc():
    plus_ten = timezone(timedelta(hours=10))
    now = datetime(2024, 5, 2, 8, 30, 15, tzinfo=plus_ten)
    assert trial_dir_name("https://example.com", "3g", now) == "example.com_3g_2024-05-01_223015"


@pytest.mark.parametrize("name, key", [
    ("example.com_none_2024-05-01_100000", "2024050110000000"),
    ("example.com_none_2024-05-01_100000_03", "2024050110000003"),
    ("example.com_4g-slow_2024-05-01T10-00-00", "2024050110000000"),
    ("example.com_none", None),
    ("notes", None),
])
def test_timestamp_key(name, key):
    assert timestamp_key(name) == key


def test_create_trial_dir_never_reuses(tmp_path):
    now = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
    first = create_trial_dir(tmp_path / "results", "https://example.com", "none", now)
    second = create_trial_dir(tmp_path / "results", "https://example.com", "none", now)
    third = create_trial_dir(tmp_path / "results", "https://example.com", "none", now)

    assert first.name == "example.com_none_2024-05-01_100000"
    assert second.name == "example.com_none_2024-05-01_100000_01"
    assert third.name == "example.com_none_2024-05-01_100000_02"


def test_locate_newest_first_and_capped(write_trial, results_root):
    dirs = [write_trial("none", minutes=m) for m in (0, 10, 20, 30)]

    found = locate(results_root, "example.com", "none", max_trials=3)

    assert found == [dirs[3], dirs[2], dirs[1]]


def test_locate_order_independent_of_creation_order(write_trial, results_root):
    late = write_trial("none", minutes=50)
    early = write_trial("none", minutes=5)
    middle = write_trial("none", minutes=25)

    assert locate(results_root, "example.com", "none") == [late, middle, early]


def test_counter_suffix_orders_after_base(write_trial, results_root):
    base = write_trial("none", minutes=0)
    bumped = results_root / (base.name + "_01")
    bumped.mkdir()
    (bumped / "metrics.json").write_text((base / "metrics.json").read_text())

    assert locate(results_root, "example.com", "none") == [bumped, base]


def test_locate_filters_by_target(write_trial, results_root):
    write_trial("none", identifier="other.org")
    mine = write_trial("none", minutes=1)

    assert locate(results_root, "example") == [mine]


def test_loose_condition_filter_matches_substring(write_trial, results_root):
    fast = write_trial("4g-fast", minutes=1)
    slow = write_trial("4g-slow", minutes=2)
    write_trial("3g", minutes=3)

    assert locate(results_root, "example.com", "4g") == [slow, fast]


def test_exact_condition_filter(write_trial, results_root):
    write_trial("4g-fast", minutes=1)
    slow = write_trial("4g-slow", minutes=2)

    assert locate(results_root, "example.com", "4g-slow", exact=True) == [slow]
    with pytest.raises(NoMatchingResults):
        locate(results_root, "example.com", "4g", exact=True)


def test_exact_ignores_path_suffix_that_looks_like_a_condition(write_trial, results_root):
    page = write_trial("4g-fast", minutes=5, identifier="example.com_none_page")
    write_trial("none", minutes=6, identifier="example.com_au")
    home = write_trial("none", minutes=1)

    assert locate(results_root, "example.com", "none", exact=True) == [home]
    assert locate(results_root, "example.com_none_page", "4g-fast", exact=True) == [page]


def test_exact_without_condition_accepts_any_condition(write_trial, results_root):
    slow = write_trial("3g", minutes=2)
    base = write_trial("none", minutes=1)
    write_trial("none", minutes=3, identifier="example.com_au")

    assert locate(results_root, "example.com", exact=True) == [slow, base]


def test_skips_dirs_without_metrics_or_timestamp(write_trial, results_root):
    good = write_trial("none", minutes=0)
    (results_root / "example.com_none_2024-05-01_110000").mkdir()
    undated = results_root / "example.com_none"
    undated.mkdir()
    (undated / "metrics.json").write_text("{}")

    assert locate(results_root, "example.com", "none") == [good]


def test_missing_root_raises(tmp_path):
    with pytest.raises(ResultsRootMissing) as exc:
        locate(tmp_path / "nope", "example.com")
    assert exc.value.path == tmp_path / "nope"


def test_no_match_lists_available(write_trial, results_root):
    write_trial("none", identifier="other.org", minutes=1)
    write_trial("3g", identifier="other.org", minutes=2)

    with pytest.raises(NoMatchingResults) as exc:
        locate(results_root, "example.com")

    assert exc.value.available == [
        "other.org_3g_2024-05-01_100200",
        "other.org_none_2024-05-01_100100",
    ]


def test_invalid_max_trials(results_root):
    with pytest.raises(ValueError):
        locate(results_root, "example.com", max_trials=0)


def test_list_result_dirs_ignores_hidden(results_root, write_trial):
    (results_root / ".cache").mkdir()
    (results_root / "stray.txt").write_text("x")
    newest = write_trial("3g", minutes=9)
    older = write_trial("none", minutes=1)

    assert list_result_dirs(results_root) == [newest, older]
