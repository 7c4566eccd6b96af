from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from backend.dependencies import get_database
from backend.errors import NotFound, ValidationError
from backend.security import Role, require_roles
from database.db import Database, add_student, add_subject, delete_student, list_students, list_subjects

router = APIRouter()


class SubjectCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    code: str
    teacher_id: StrictInt | None = Field(default=None, alias="teacherId", gt=0)


class StudentCreate(BaseModel):
    name: str
    email: str


def _subject_payload(row) -> dict:
    return {"id": row["id"], "name": row["name"], "code": row["code"], "teacherId": row["teacher_id"]}


@router.get("/subjects")
def subjects(db: Database = Depends(get_database)):
    with db.read() as conn:
        rows = list_subjects(conn)
    return [_subject_payload(r) for r in rows]


@router.post(
    "/subjects",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(Role.ADMIN))],
)
def create_subject(payload: SubjectCreate, db: Database = Depends(get_database)):
    name = payload.name.strip()
    code = payload.code.strip()
    if not name or not code:
        raise ValidationError("Subject name and code are required.")

    with db.transaction() as conn:
        row = add_subject(conn, name, code, payload.teacher_id)
    return _subject_payload(row)


@router.get("/students", dependencies=[Depends(require_roles(Role.ADMIN, Role.TEACHER))])
def students(db: Database = Depends(get_database)):
    with db.read() as conn:
        return list_students(conn)


@router.post(
    "/students",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(Role.ADMIN))],
)
def create_student(payload: StudentCreate, db: Database = Depends(get_database)):
    name = payload.name.strip()
    email = payload.email.strip()
    if not name or not email:
        raise ValidationError("Student name and email are required.")
    if "@" not in email:
        raise ValidationError("Student email is invalid.")

    with db.transaction() as conn:
        return add_student(conn, name, email)


@router.delete("/students/{student_id}", dependencies=[Depends(require_roles(Role.ADMIN))])
def remove_student(student_id: int, db: Database = Depends(get_database)):
    with db.transaction() as conn:
        deleted = delete_student(conn, student_id)
    if not deleted:
        raise NotFound("Student not found.")
    return {"ok": True}
