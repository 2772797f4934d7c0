from types import SimpleNamespace

import pytest

from core.errors import ValidationError
from services import timetable_service


def slot(day="Monday", start="09:00", end="10:00", timetable_id=1, faculty_id=None, room=None, course_id=None):
    return SimpleNamespace(
        day=day, start_time=start, end_time=end, timetable_id=timetable_id,
        faculty_id=faculty_id, room=room, course_id=course_id,
    )


def test_back_to_back_periods_are_fine():
    timetable_service.validate_periods([
        slot(start="09:00", end="10:00"),
        slot(start="10:00", end="11:00"),
        slot(day="Tuesday", start="09:30", end="10:30"),
    ])


def test_overlap_is_detected_regardless_of_input_order():
    with pytest.raises(ValidationError, match="Time overlap detected in Monday schedule"):
        timetable_service.validate_periods([
            slot(start="11:00", end="12:00"),
            slot(start="09:00", end="11:30"),
        ])


def test_times_compare_numerically_not_as_text():
    # "9:30" sorts after "10:00" as a string
    with pytest.raises(ValidationError):
        timetable_service.validate_periods([
            slot(start="9:30", end="10:30"),
            slot(start="10:00", end="11:00"),
        ])


@pytest.mark.parametrize("start, end", [("10:00", "09:00"), ("10:00", "10:00"), ("25:00", "26:00"), ("", "10:00")])
def test_invalid_period_times(start, end):
    with pytest.raises(ValidationError):
        timetable_service.validate_periods([slot(start=start, end=end)])


def test_same_slot_in_one_timetable_is_not_a_conflict():
    periods = [slot(faculty_id=5, room="A1"), slot(faculty_id=5, room="A1")]
    assert timetable_service.detect_conflicts(periods) == []


def test_faculty_and_room_double_booking():
    periods = [
        slot(timetable_id=1, faculty_id=5, room="Lab 1"),
        slot(timetable_id=2, faculty_id=5, room="lab 1 "),
        slot(timetable_id=3, faculty_id=6, room="Lab 2", start="10:00", end="11:00"),
    ]
    conflicts = timetable_service.detect_conflicts(periods)

    assert {c["type"] for c in conflicts} == {"faculty_conflict", "room_conflict"}
    faculty_conflict = next(c for c in conflicts if c["type"] == "faculty_conflict")
    assert faculty_conflict["facultyId"] == 5
    assert faculty_conflict["timeSlot"] == "Monday-09:00-10:00"
    assert faculty_conflict["conflictingTimetables"] == [1, 2]


def test_stats_and_grid():
    periods = [
        slot(course_id=1, faculty_id=5, start="11:00", end="12:00"),
        slot(course_id=1, faculty_id=6),
        slot(day="Friday", course_id=2),
    ]
    stats = timetable_service.timetable_stats(periods)
    assert stats == {"totalPeriods": 3, "uniqueCourses": 2, "uniqueFaculty": 2, "averagePeriodsPerDay": 0.5}

    grid = timetable_service.group_by_day(periods, lambda p: p.start_time)
    assert list(grid) == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
    assert grid["Monday"] == ["09:00", "11:00"]
    assert grid["Friday"] == ["09:00"]
