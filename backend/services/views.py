from datetime import date, datetime
from typing import Any

from backend.errors import Forbidden
from backend.security import Role
from backend.services.dates import date_window
from database.db import (
    Database,
    SubjectRow,
    get_students_by_ids,
    get_subjects_by_ids,
    list_sessions,
    list_student_marks,
    list_subjects,
)


def _subject_view(subject: SubjectRow) -> dict[str, Any]:
    return {
        "id": subject["id"],
        "name": subject["name"],
        "code": subject["code"],
        "teacherId": subject["teacher_id"],
    }


def build_roster(
    db: Database,
    role: Role,
    requester_id: int,
    start: date | datetime | str | None = None,
    end: date | datetime | str | None = None,
) -> list[dict[str, Any]]:
    """
    Sessions visible to an admin or teacher, denormalised with subject and
    student details. Teachers only see subjects they own; ``start``/``end``
    are inclusive calendar days.
    """
    try:
        role = Role(role)
    except ValueError:
        raise Forbidden(f"Unknown role {role!r}.")
    if role not in (Role.ADMIN, Role.TEACHER):
        raise Forbidden("Roster is only available to admins and teachers.")
    date_from, date_before = date_window(start, end)

    with db.read() as conn:
        subject_ids: list[int] | None = None
        if role is Role.TEACHER:
            subject_ids = [s["id"] for s in list_subjects(conn, teacher_id=requester_id)]
            if not subject_ids:
                return []

        sessions = list_sessions(
            conn,
            subject_ids=subject_ids,
            date_from=date_from,
            date_before=date_before,
        )
        subjects = get_subjects_by_ids(conn, (s["subject_id"] for s in sessions))
        students = get_students_by_ids(
            conn,
            (m["student_id"] for s in sessions for m in s["marks"]),
        )

    return [
        {
            "id": s["id"],
            "date": s["date"],
            "subject": _subject_view(subjects[s["subject_id"]]),
            "attendance": [
                {
                    "student": students[m["student_id"]],
                    "isPresent": m["is_present"],
                }
                for m in s["marks"]
            ],
        }
        for s in sessions
    ]


def build_self_view(db: Database, student_id: int) -> list[dict[str, Any]]:
    # Only sessions holding a mark for the student are selected, so every
    # emitted item is marked.
    with db.read() as conn:
        rows = list_student_marks(conn, student_id)
    return [
        {
            "sessionId": r["session_id"],
            "date": r["date"],
            "subjectName": r["subject_name"],
            "isPresent": r["is_present"],
            "isMarked": True,
        }
        for r in rows
    ]
