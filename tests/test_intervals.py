from datetime import datetime, timedelta, timezone

import pytest

from rental_engine.core.exceptions import ValidationError
from rental_engine.core.intervals import Window, overlaps, peak_overlap
from rental_engine.core.utils import add_months, ensure_utc, to_money

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def day(n: int) -> datetime:
    return JAN_1 + timedelta(days=n - 1)


def test_overlap_is_half_open():
    assert overlaps(day(3), day(5), day(4), day(6))
    assert not overlaps(day(3), day(5), day(5), day(6))
    assert not overlaps(day(5), day(6), day(3), day(5))


def test_window_normalizes_naive_datetimes_to_utc():
    window = Window(datetime(2024, 1, 1), datetime(2024, 1, 2))
    assert window.start.tzinfo is not None
    assert window.start == JAN_1


def test_window_from_bounds_without_bounds_is_instant():
    window = Window.from_bounds()
    assert window.is_instant
    assert window.duration == timedelta(0)


def test_window_from_bounds_requires_both_bounds():
    with pytest.raises(ValidationError):
        Window.from_bounds(day(1), None)
    with pytest.raises(ValidationError):
        Window.from_bounds(None, day(2))


def test_window_from_bounds_rejects_inverted_window():
    with pytest.raises(ValidationError):
        Window.from_bounds(day(5), day(3))


def test_instant_window_includes_start_and_excludes_end():
    assert Window.instant(day(3)).overlaps(day(3), day(5))
    assert Window.instant(day(4)).overlaps(day(3), day(5))
    assert not Window.instant(day(5)).overlaps(day(3), day(5))


def test_peak_overlap_counts_concurrent_allocations_only():
    window = Window(day(1), day(10))
    segments = [
        (day(1), day(3), 1),
        (day(3), day(5), 1),  # starts exactly when the first ends
        (day(2), day(4), 1),
    ]
    assert peak_overlap(segments, window) == 2


def test_peak_overlap_ignores_segments_outside_window():
    window = Window(day(5), day(6))
    assert peak_overlap([(day(1), day(5), 3), (day(6), day(8), 2)], window) == 0


def test_peak_overlap_sums_quantities():
    window = Window(day(1), day(3))
    assert peak_overlap([(day(1), day(3), 2), (day(2), day(4), 1)], window) == 3


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2024, 1, 31).date(), 1) == datetime(2024, 2, 29).date()
    assert add_months(datetime(2023, 1, 31).date(), 1) == datetime(2023, 2, 28).date()
    assert add_months(datetime(2024, 11, 15).date(), 3) == datetime(2025, 2, 15).date()


def test_to_money_rounds_half_up():
    assert str(to_money("2.005")) == "2.01"
    assert str(to_money(20)) == "20.00"


def test_ensure_utc_converts_offsets():
    plus_two = timezone(timedelta(hours=2))
    assert ensure_utc(datetime(2024, 1, 1, 2, tzinfo=plus_two)) == JAN_1


def test_peak_overlap_at_an_instant_sums_covering_segments():
    segments = [(day(1), day(5), 2), (day(3), day(4), 1), (day(4), day(6), 1)]
    assert peak_overlap(segments, Window.instant(day(3))) == 3
    assert peak_overlap(segments, Window.instant(day(4))) == 3
