"""
Timetable validation, conflict detection and the approval transition.
"""
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import ValidationError
from core.validators import is_valid_time, time_to_minutes
from database.models import Course, Faculty, Timetable, TimetableStatus, Weekday
from core.logger import logger

WORKING_DAYS = 6


def validate_periods(periods: Sequence[Any]):
    """
    Check a flat list of periods (objects with ``day``, ``start_time`` and ``end_time``).

    Every period needs well-formed HH:MM times with start before end. Within a
    day, periods sorted by start time must not overlap.

    Raises:
        ValidationError: First problem found
    """
    by_day: Dict[Weekday, List[Any]] = defaultdict(list)
    for period in periods:
        day = Weekday(period.day).value
        if not period.start_time or not period.end_time:
            raise ValidationError(f"Missing time information for {day}")
        if not is_valid_time(period.start_time) or not is_valid_time(period.end_time):
            raise ValidationError(f"Invalid time format in {day} schedule")
        if time_to_minutes(period.start_time) >= time_to_minutes(period.end_time):
            raise ValidationError(f"Start time must be before end time in {day} schedule")
        by_day[day].append(period)

    for day, day_periods in by_day.items():
        ordered = sorted(day_periods, key=lambda p: time_to_minutes(p.start_time))
        for current, following in zip(ordered, ordered[1:]):
            if time_to_minutes(current.end_time) > time_to_minutes(following.start_time):
                raise ValidationError(f"Time overlap detected in {day} schedule")


def validate_references(db: Session, periods: Sequence[Any]):
    """Referenced course and faculty ids must exist."""
    course_ids = {p.course_id for p in periods if p.course_id is not None}
    faculty_ids = {p.faculty_id for p in periods if p.faculty_id is not None}

    if course_ids:
        found = {row[0] for row in db.query(Course.id).filter(Course.id.in_(sorted(course_ids))).all()}
        missing = course_ids - found
        if missing:
            raise ValidationError(f"Invalid course ID in schedule: {sorted(missing)[0]}")
    if faculty_ids:
        found = {row[0] for row in db.query(Faculty.id).filter(Faculty.id.in_(sorted(faculty_ids))).all()}
        missing = faculty_ids - found
        if missing:
            raise ValidationError(f"Invalid faculty ID in schedule: {sorted(missing)[0]}")


def _day_value(day) -> str:
    return day.value if hasattr(day, "value") else str(day)


def detect_conflicts(periods: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Find double-booked faculty and rooms across timetables.

    ``periods`` are objects carrying ``timetable_id``, ``faculty_id``, ``room``,
    ``day``, ``start_time`` and ``end_time``. Slots are keyed by the exact
    (day, start, end); a key seen in two different timetables is a conflict.
    """
    conflicts = []
    faculty_slots: Dict[tuple, Any] = {}
    room_slots: Dict[tuple, Any] = {}

    for period in periods:
        slot = (_day_value(period.day), period.start_time, period.end_time)
        time_slot = "-".join(slot)

        if period.faculty_id is not None:
            key = (period.faculty_id,) + slot
            first = faculty_slots.get(key)
            if first is None:
                faculty_slots[key] = period
            elif first.timetable_id != period.timetable_id:
                conflicts.append({
                    "type": "faculty_conflict",
                    "facultyId": period.faculty_id,
                    "timeSlot": time_slot,
                    "conflictingTimetables": [first.timetable_id, period.timetable_id],
                })

        if period.room:
            key = (period.room.strip().lower(),) + slot
            first = room_slots.get(key)
            if first is None:
                room_slots[key] = period
            elif first.timetable_id != period.timetable_id:
                conflicts.append({
                    "type": "room_conflict",
                    "room": period.room,
                    "timeSlot": time_slot,
                    "conflictingTimetables": [first.timetable_id, period.timetable_id],
                })

    return conflicts


def timetable_stats(periods: Sequence[Any]) -> Dict[str, Any]:
    total = len(periods)
    return {
        "totalPeriods": total,
        "uniqueCourses": len({p.course_id for p in periods if p.course_id is not None}),
        "uniqueFaculty": len({p.faculty_id for p in periods if p.faculty_id is not None}),
        "averagePeriodsPerDay": round(total / WORKING_DAYS, 1),
    }


def group_by_day(periods: Iterable[Any], serialize) -> Dict[str, List[Dict[str, Any]]]:
    """Periods bucketed per weekday (Monday first), each bucket sorted by start time."""
    grid = {day.value: [] for day in Weekday}
    for period in sorted(periods, key=lambda p: time_to_minutes(p.start_time)):
        grid[_day_value(period.day)].append(serialize(period))
    return grid


def active_timetable_exists(
    db: Session,
    department_id: int,
    semester: int,
    academic_year: str,
    timetable_type,
    exclude_id: Optional[int] = None
) -> bool:
    query = db.query(Timetable.id).filter(
        Timetable.department_id == department_id,
        Timetable.semester == semester,
        Timetable.academic_year == academic_year,
        Timetable.timetable_type == timetable_type,
        Timetable.is_active == True
    )
    if exclude_id is not None:
        query = query.filter(Timetable.id != exclude_id)
    return query.first() is not None


def approve_timetable(db: Session, timetable: Timetable, approver_id: int, now: Optional[datetime] = None) -> Timetable:
    """
    Make ``timetable`` the single active one for its key.

    Runs as one transaction: other active timetables with the same
    (department, semester, academic year, type) are deactivated, then this one
    is approved and activated. The partial unique index on the key rejects a
    concurrent approval that slips in between.
    """
    if timetable.status == TimetableStatus.APPROVED:
        raise ValidationError("Timetable is already approved")

    now = now or datetime.utcnow()
    try:
        deactivated = db.execute(
            update(Timetable)
            .where(
                Timetable.department_id == timetable.department_id,
                Timetable.semester == timetable.semester,
                Timetable.academic_year == timetable.academic_year,
                Timetable.timetable_type == timetable.timetable_type,
                Timetable.is_active == True,
                Timetable.id != timetable.id,
            )
            .values(is_active=False, status=TimetableStatus.ARCHIVED, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount

        timetable.status = TimetableStatus.APPROVED
        timetable.is_active = True
        timetable.approved_by = approver_id
        timetable.approved_at = now
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Another timetable was activated for this combination; please retry")

    if deactivated:
        logger.info(f"Deactivated {deactivated} timetable(s) superseded by timetable {timetable.id}")
    db.refresh(timetable)
    return timetable
