from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt

from backend.dependencies import get_database
from backend.security import AuthenticatedUser, Role, require_roles
from backend.services.reconciler import reconcile
from backend.services.views import build_roster, build_self_view
from database.db import Database, SessionRow

router = APIRouter()


class MarkIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: StrictInt = Field(alias="studentId", gt=0)
    is_present: StrictBool = Field(alias="isPresent")


class AttendanceSubmission(BaseModel):
    """``date`` may be a full ISO datetime; it is truncated to its UTC calendar day."""

    model_config = ConfigDict(populate_by_name=True)

    subject_id: StrictInt = Field(alias="subjectId", gt=0)
    date: str
    attendance: list[MarkIn]


def _session_payload(session: SessionRow) -> dict:
    return {
        "id": session["id"],
        "subjectId": session["subject_id"],
        "date": session["date"],
        "attendance": [
            {"studentId": m["student_id"], "isPresent": m["is_present"]}
            for m in session["marks"]
        ],
    }


@router.post("/attendance", status_code=status.HTTP_201_CREATED)
def submit_attendance(
    payload: AttendanceSubmission,
    response: Response,
    _user: AuthenticatedUser = Depends(require_roles(Role.TEACHER, Role.ADMIN)),
    db: Database = Depends(get_database),
):
    result = reconcile(
        db,
        payload.subject_id,
        payload.date,
        [m.model_dump() for m in payload.attendance],
    )
    if not result["created"]:
        response.status_code = status.HTTP_200_OK
    return _session_payload(result["session"])


@router.get("/attendance")
def attendance_roster(
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    user: AuthenticatedUser = Depends(require_roles(Role.TEACHER, Role.ADMIN)),
    db: Database = Depends(get_database),
):
    return build_roster(db, user.role, user.id, start=start_date, end=end_date)


@router.get("/my-attendance")
def my_attendance(
    user: AuthenticatedUser = Depends(require_roles(Role.STUDENT)),
    db: Database = Depends(get_database),
):
    return build_self_view(db, user.id)
