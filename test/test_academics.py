from datetime import date, timedelta

import pytest

from core.errors import ValidationError
from database.models import AttendanceStatus
from services import academics


def test_grade_points_follow_the_ten_point_scale():
    assert academics.grade_point("A+") == 10.0
    assert academics.grade_point("C") == 5.0
    assert academics.grade_point("F") == 0.0


def test_unknown_grade_is_rejected():
    with pytest.raises(ValidationError):
        academics.grade_point("E")


def test_d_is_not_a_passing_grade():
    assert academics.is_passing("C")
    assert not academics.is_passing("D")
    assert not academics.is_passing(None)


def test_weighted_gpa_uses_credits():
    # (9 * 4 + 7 * 2) / 6
    assert academics.weighted_gpa([(9.0, 4), (7.0, 2)]) == 8.33


def test_weighted_gpa_of_nothing_is_zero():
    assert academics.weighted_gpa([]) == 0.0
    assert academics.weighted_gpa([(None, 3)]) == 0.0


def test_count_by_status_counts_late_as_attended():
    summary = academics.count_by_status([
        AttendanceStatus.PRESENT,
        AttendanceStatus.LATE,
        AttendanceStatus.ABSENT,
        AttendanceStatus.EXCUSED,
    ])
    assert summary["present"] == 1
    assert summary["late"] == 1
    assert summary["total"] == 4
    assert summary["percentage"] == 50.0


def test_attendance_percentage_without_sessions_is_zero():
    assert academics.attendance_percentage(0, 0) == 0.0


def test_attendance_slot_rejects_future_dates_and_bad_periods():
    today = date(2024, 9, 2)
    academics.validate_attendance_slot(today, 1, today=today)
    with pytest.raises(ValidationError):
        academics.validate_attendance_slot(today + timedelta(days=1), 1, today=today)
    with pytest.raises(ValidationError):
        academics.validate_attendance_slot(today, 0, today=today)
    with pytest.raises(ValidationError):
        academics.validate_attendance_slot(today, 9, today=today)
