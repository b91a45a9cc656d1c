from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from calpilot.errors import InvalidInput
from calpilot.models import BusyInterval, FreeSlot
from calpilot.reader import MultiCalendarReader
from calpilot.slots import FreeSlotFinder, compute_open_slots, working_window

from fakes import TZ, FakeSource, at, event

DAY = date(2026, 3, 5)
WINDOW = (at(5, 8), at(5, 22))
HALF_HOUR = timedelta(minutes=30)


def _busy(*spans):
    return [BusyInterval(start=s, end=e) for s, e in spans]


def _finder(*sources, start_hour=8, end_hour=22):
    return FreeSlotFinder(MultiCalendarReader(list(sources), TZ), start_hour=start_hour, end_hour=end_hour)


def test_example_day_across_three_sources():
    finder = _finder(
        FakeSource("google:a", [event("A", at(5, 9), at(5, 10))]),
        FakeSource("google:b", [event("B", at(5, 9, 30), at(5, 9, 45))]),
        FakeSource("icloud:Home", [event("C", at(5, 14), at(5, 15))]),
    )

    slots = finder.find_open_slots(DAY, 30)

    assert slots == [
        FreeSlot(at(5, 8), at(5, 8, 30)),
        FreeSlot(at(5, 10), at(5, 10, 30)),
        FreeSlot(at(5, 15), at(5, 15, 30)),
    ]


def test_no_events_gives_single_slot_at_window_start():
    assert compute_open_slots([], *WINDOW, HALF_HOUR) == [FreeSlot(at(5, 8), at(5, 8, 30))]


def test_duration_longer_than_window_gives_nothing():
    assert compute_open_slots([], *WINDOW, timedelta(hours=15)) == []


def test_back_to_back_events_leave_no_gap_between_them():
    busy = _busy((at(5, 8), at(5, 12)), (at(5, 12), at(5, 16)), (at(5, 16), at(5, 22)))

    assert compute_open_slots(busy, *WINDOW, HALF_HOUR) == []


def test_event_starting_before_window_pushes_cursor_past_its_end():
    busy = _busy((at(5, 6), at(5, 9, 15)))

    assert compute_open_slots(busy, *WINDOW, HALF_HOUR) == [FreeSlot(at(5, 9, 15), at(5, 9, 45))]


def test_cursor_never_moves_backwards_for_nested_events():
    busy = _busy((at(5, 8), at(5, 12)), (at(5, 9), at(5, 10)))

    slots = compute_open_slots(busy, *WINDOW, HALF_HOUR)

    assert slots == [FreeSlot(at(5, 12), at(5, 12, 30))]


def test_wide_gap_yields_only_the_earliest_slot():
    busy = _busy((at(5, 8), at(5, 9)), (at(5, 13), at(5, 22)))

    slots = compute_open_slots(busy, *WINDOW, HALF_HOUR)

    assert slots == [FreeSlot(at(5, 9), at(5, 9, 30))]


def test_gap_is_clipped_at_window_end():
    busy = _busy((at(5, 8), at(5, 21, 45)), (at(5, 22, 30), at(5, 23)))

    assert compute_open_slots(busy, *WINDOW, HALF_HOUR) == []


def test_limit_stops_the_sweep_early():
    busy = _busy((at(5, 9), at(5, 10)), (at(5, 11), at(5, 12)), (at(5, 13), at(5, 14)))

    slots = compute_open_slots(busy, *WINDOW, HALF_HOUR, limit=2)

    assert slots == [FreeSlot(at(5, 8), at(5, 8, 30)), FreeSlot(at(5, 10), at(5, 10, 30))]


def test_unsorted_input_is_sorted_first():
    busy = _busy((at(5, 14), at(5, 15)), (at(5, 8), at(5, 13)))

    slots = compute_open_slots(busy, *WINDOW, HALF_HOUR)

    assert slots == [FreeSlot(at(5, 13), at(5, 13, 30)), FreeSlot(at(5, 15), at(5, 15, 30))]


def test_slots_stay_inside_window_and_clear_of_busy_time():
    busy = _busy(
        (at(5, 7), at(5, 8, 20)),
        (at(5, 9), at(5, 9, 50)),
        (at(5, 9, 40), at(5, 11)),
        (at(5, 11, 20), at(5, 11, 45)),
        (at(5, 17), at(5, 21, 40)),
    )
    duration = timedelta(minutes=20)

    slots = compute_open_slots(busy, *WINDOW, duration)

    assert slots
    for s in slots:
        assert s.start >= WINDOW[0]
        assert s.end <= WINDOW[1]
        assert s.end - s.start == duration
        assert all(not (s.start < b.end and b.start < s.end) for b in busy)


def test_non_positive_duration_is_rejected():
    with pytest.raises(InvalidInput):
        compute_open_slots([], *WINDOW, timedelta(0))
    with pytest.raises(InvalidInput):
        _finder(FakeSource("google:a")).find_open_slots(DAY, -15)


def test_limit_zero_skips_the_calendar_read():
    source = FakeSource("google:a")

    assert _finder(source).find_open_slots(DAY, 30, limit=0) == []
    assert source.calls == []


def test_all_day_events_do_not_block_time():
    holiday = event(
        "holiday",
        datetime(2026, 3, 5, 0, 0, tzinfo=TZ),
        datetime(2026, 3, 6, 0, 0, tzinfo=TZ),
        all_day=True,
    )
    finder = _finder(FakeSource("google:a", [holiday]))

    assert finder.find_open_slots(DAY, 60) == [FreeSlot(at(5, 8), at(5, 9))]


def test_custom_working_hours_window():
    finder = _finder(FakeSource("google:a"), start_hour=10, end_hour=12)

    assert finder.find_open_slots(DAY, 120) == [FreeSlot(at(5, 10), at(5, 12))]
    assert finder.find_open_slots(DAY, 121) == []


def test_window_can_run_to_midnight():
    start, end = working_window(DAY, TZ, 8, 24)

    assert start == at(5, 8)
    assert end == at(6, 0)


@pytest.mark.parametrize("hours", [(8, 30), (-1, 10), (12, 12)])
def test_finder_rejects_hours_outside_one_day(hours):
    with pytest.raises(ValueError):
        _finder(FakeSource("google:a"), start_hour=hours[0], end_hour=hours[1])


LONDON = ZoneInfo("Europe/London")
SPRING_FORWARD = date(2026, 3, 29)


def test_gap_across_clock_change_uses_elapsed_time():
    # 01:00 GMT jumps to 02:00 BST, so 00:00 to 02:30 local is 90 real minutes
    window_start, window_end = working_window(SPRING_FORWARD, LONDON, 0, 24)
    busy = [BusyInterval(datetime(2026, 3, 29, 2, 30, tzinfo=LONDON), datetime(2026, 3, 29, 23, 0, tzinfo=LONDON))]

    fits = compute_open_slots(busy, window_start, window_end, timedelta(minutes=90))
    too_long = compute_open_slots(busy, window_start, window_end, timedelta(minutes=91))

    assert len(fits) == 1
    assert fits[0].start == datetime(2026, 3, 29, 0, 0, tzinfo=LONDON)
    assert fits[0].end == datetime(2026, 3, 29, 2, 30, tzinfo=LONDON)
    assert too_long == []
