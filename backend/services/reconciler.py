"""
Attendance reconciliation.

A session is identified by ``(subject_id, date)``. Submitting marks for a key
that already has a session merges them into it: a student already on the list
has their ``is_present`` overwritten in place, a new student is appended.
Repeated submissions therefore converge on the latest mark per student and
never produce a second session for the same lecture day.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any, TypedDict

from backend.errors import NotFound, ValidationError
from backend.services.dates import normalize_date_key
from database.db import (
    Database,
    MarkRow,
    SessionRow,
    find_session,
    get_students_by_ids,
    get_subject,
    insert_session,
    save_marks,
)

logger = logging.getLogger(__name__)


class ReconcileResult(TypedDict):
    session: SessionRow
    created: bool


def _positive_id(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer.")
    return value


def validate_marks(marks: Any) -> list[MarkRow]:
    if marks is None:
        raise ValidationError("attendance is required.")
    if isinstance(marks, (str, bytes, Mapping)) or not isinstance(marks, Sequence):
        raise ValidationError("attendance must be a list of marks.")

    clean: list[MarkRow] = []
    for idx, mark in enumerate(marks):
        if not isinstance(mark, Mapping):
            raise ValidationError(f"attendance[{idx}] must be an object.")
        if mark.get("student_id") is None:
            raise ValidationError(f"attendance[{idx}].studentId is required.")
        student_id = _positive_id(mark["student_id"], f"attendance[{idx}].studentId")
        is_present = mark.get("is_present")
        if not isinstance(is_present, bool):
            raise ValidationError(f"attendance[{idx}].isPresent must be true or false.")
        clean.append({"student_id": student_id, "is_present": is_present})
    return clean


def merge_marks(existing: Iterable[MarkRow], incoming: Iterable[MarkRow]) -> list[MarkRow]:
    """
    Apply ``incoming`` onto ``existing`` in iteration order.

    Matching students are overwritten in place, unknown ones appended, so a
    duplicate inside ``incoming`` resolves to its last occurrence.
    """
    merged: list[MarkRow] = [{"student_id": m["student_id"], "is_present": m["is_present"]} for m in existing]
    positions = {m["student_id"]: pos for pos, m in enumerate(merged)}

    for mark in incoming:
        pos = positions.get(mark["student_id"])
        if pos is None:
            positions[mark["student_id"]] = len(merged)
            merged.append({"student_id": mark["student_id"], "is_present": mark["is_present"]})
        else:
            merged[pos]["is_present"] = mark["is_present"]
    return merged


def reconcile(
    db: Database,
    subject_id: int,
    date_value: date | datetime | str,
    marks: Sequence[Mapping[str, Any]],
) -> ReconcileResult:
    if subject_id is None:
        raise ValidationError("subjectId is required.")
    subject_id = _positive_id(subject_id, "subjectId")
    date_key = normalize_date_key(date_value)
    incoming = validate_marks(marks)

    with db.transaction() as conn:
        if get_subject(conn, subject_id) is None:
            raise NotFound(f"Subject {subject_id} not found.")

        student_ids = {m["student_id"] for m in incoming}
        known = get_students_by_ids(conn, student_ids)
        missing = sorted(student_ids - known.keys())
        if missing:
            raise NotFound(f"Unknown student id(s): {', '.join(str(s) for s in missing)}.")

        existing = find_session(conn, subject_id, date_key)
        if existing is None:
            session_id = insert_session(conn, subject_id, date_key)
            merged = merge_marks([], incoming)
            created = True
        else:
            session_id = existing["id"]
            merged = merge_marks(existing["marks"], incoming)
            created = False
        save_marks(conn, session_id, merged)

    logger.info(
        "%s attendance session %s (subject=%s, date=%s, marks=%d)",
        "Created" if created else "Updated",
        session_id,
        subject_id,
        date_key,
        len(merged),
    )
    return {
        "session": {
            "id": session_id,
            "subject_id": subject_id,
            "date": date_key,
            "marks": merged,
        },
        "created": created,
    }
