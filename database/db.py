import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, TypedDict

from backend.config import DB_PATH, DB_TIMEOUT_SECONDS
from backend.errors import Conflict, StoreError

logger = logging.getLogger(__name__)


class MarkRow(TypedDict):
    student_id: int
    is_present: bool


class SessionRow(TypedDict):
    id: int
    subject_id: int
    date: str
    marks: list[MarkRow]


class SubjectRow(TypedDict):
    id: int
    name: str
    code: str
    teacher_id: int | None


class StudentRow(TypedDict):
    id: int
    name: str
    email: str


class StudentMarkRow(TypedDict):
    session_id: int
    date: str
    subject_id: int
    subject_name: str
    is_present: bool


class Database:
    """
    Process-wide handle on the attendance store.

    ``open()`` connects and creates the schema, ``close()`` releases the
    connection. All access goes through :meth:`read` or :meth:`transaction`,
    which serialise on one lock so the shared connection is never used by two
    threads at once.
    """

    def __init__(self, path: str | Path | None = None, *, timeout: float | None = None):
        self.path = Path(path) if path is not None else DB_PATH
        self.timeout = DB_TIMEOUT_SECONDS if timeout is None else timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "Database":
        with self._lock:
            if self._conn is not None:
                return self
            try:
                if str(self.path) != ":memory:":
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.path),
                    timeout=self.timeout,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.execute("PRAGMA foreign_keys = ON;")
                create_tables(conn)
            except (OSError, sqlite3.Error) as exc:
                raise StoreError(f"Could not open attendance store at {self.path}.") from exc
            self._conn = conn
            logger.info("Attendance store opened at %s", self.path)
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.info("Attendance store closed")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Attendance store is not open.")
        return self._conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StoreError(f"Attendance store read failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the block as one ``BEGIN IMMEDIATE`` write transaction.

        Any exception rolls everything back; sqlite errors are re-raised as
        :class:`StoreError`, everything else propagates unchanged.
        """
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreError(f"Could not start transaction: {exc}") from exc

            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                _rollback(conn)
                raise StoreError(f"Attendance store write failed: {exc}") from exc
            except BaseException:
                _rollback(conn)
                raise


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


def create_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS subjects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            code TEXT NOT NULL,
            teacher_id INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS students (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        -- one row per subject per calendar day (YYYY-MM-DD)
        CREATE TABLE IF NOT EXISTS attendance_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subject_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (subject_id) REFERENCES subjects(id),
            UNIQUE(subject_id, date)
        );

        CREATE TABLE IF NOT EXISTS attendance_marks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL,
            position INTEGER NOT NULL,
            student_id INTEGER NOT NULL,
            is_present INTEGER NOT NULL CHECK (is_present IN (0, 1)),
            FOREIGN KEY (session_id) REFERENCES attendance_sessions(id) ON DELETE CASCADE,
            FOREIGN KEY (student_id) REFERENCES students(id),
            UNIQUE(session_id, student_id)
        );

        CREATE INDEX IF NOT EXISTS idx_attendance_sessions_date
            ON attendance_sessions(date);
        CREATE INDEX IF NOT EXISTS idx_attendance_marks_student
            ON attendance_marks(student_id);
        """
    )


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


# -----------------------------
# Subjects
# -----------------------------
def _subject_from_row(row) -> SubjectRow:
    return {
        "id": int(row[0]),
        "name": str(row[1]),
        "code": str(row[2]),
        "teacher_id": int(row[3]) if row[3] is not None else None,
    }


def add_subject(
    conn: sqlite3.Connection,
    name: str,
    code: str,
    teacher_id: int | None = None,
) -> SubjectRow:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO subjects (name, code, teacher_id)
        VALUES (?, ?, ?)
        """,
        (name, code, teacher_id),
    )
    return {"id": int(cur.lastrowid), "name": name, "code": code, "teacher_id": teacher_id}


def get_subject(conn: sqlite3.Connection, subject_id: int) -> SubjectRow | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, name, code, teacher_id
        FROM subjects
        WHERE id = ?
        """,
        (subject_id,),
    )
    row = cur.fetchone()
    return _subject_from_row(row) if row else None


def list_subjects(conn: sqlite3.Connection, *, teacher_id: int | None = None) -> list[SubjectRow]:
    cur = conn.cursor()
    if teacher_id is None:
        cur.execute("SELECT id, name, code, teacher_id FROM subjects ORDER BY id")
    else:
        cur.execute(
            """
            SELECT id, name, code, teacher_id
            FROM subjects
            WHERE teacher_id = ?
            ORDER BY id
            """,
            (teacher_id,),
        )
    return [_subject_from_row(r) for r in cur.fetchall()]


def get_subjects_by_ids(conn: sqlite3.Connection, subject_ids: Iterable[int]) -> dict[int, SubjectRow]:
    ids = sorted(set(subject_ids))
    if not ids:
        return {}
    cur = conn.cursor()
    cur.execute(
        f"SELECT id, name, code, teacher_id FROM subjects WHERE id IN ({_placeholders(ids)})",
        ids,
    )
    return {int(r[0]): _subject_from_row(r) for r in cur.fetchall()}


# -----------------------------
# Students
# -----------------------------
def add_student(conn: sqlite3.Connection, name: str, email: str) -> StudentRow:
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO students (name, email)
            VALUES (?, ?)
            """,
            (name, email),
        )
    except sqlite3.IntegrityError:
        raise Conflict(f"Student with email {email!r} already exists.")
    return {"id": int(cur.lastrowid), "name": name, "email": email}


def list_students(conn: sqlite3.Connection) -> list[StudentRow]:
    cur = conn.cursor()
    cur.execute("SELECT id, name, email FROM students ORDER BY name, id")
    return [{"id": int(r[0]), "name": str(r[1]), "email": str(r[2])} for r in cur.fetchall()]


def get_students_by_ids(conn: sqlite3.Connection, student_ids: Iterable[int]) -> dict[int, StudentRow]:
    ids = sorted(set(student_ids))
    if not ids:
        return {}
    cur = conn.cursor()
    cur.execute(
        f"SELECT id, name, email FROM students WHERE id IN ({_placeholders(ids)})",
        ids,
    )
    return {int(r[0]): {"id": int(r[0]), "name": str(r[1]), "email": str(r[2])} for r in cur.fetchall()}


def delete_student(conn: sqlite3.Connection, student_id: int) -> bool:
    """
    Delete a student who has no attendance marks. Returns False when the
    student does not exist; raises :class:`Conflict` when marks reference them.
    """
    cur = conn.cursor()
    cur.execute("SELECT id FROM students WHERE id = ?", (student_id,))
    if not cur.fetchone():
        return False

    cur.execute("SELECT COUNT(1) FROM attendance_marks WHERE student_id = ?", (student_id,))
    marked = int(cur.fetchone()[0])
    if marked:
        raise Conflict(f"Student {student_id} has {marked} attendance mark(s) and cannot be deleted.")

    cur.execute("DELETE FROM students WHERE id = ?", (student_id,))
    return True


# -----------------------------
# Attendance sessions
# -----------------------------
def _load_marks(conn: sqlite3.Connection, session_ids: list[int]) -> dict[int, list[MarkRow]]:
    marks: dict[int, list[MarkRow]] = {sid: [] for sid in session_ids}
    if not session_ids:
        return marks
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT session_id, student_id, is_present
        FROM attendance_marks
        WHERE session_id IN ({_placeholders(session_ids)})
        ORDER BY session_id, position
        """,
        session_ids,
    )
    for session_id, student_id, is_present in cur.fetchall():
        marks[int(session_id)].append({"student_id": int(student_id), "is_present": bool(is_present)})
    return marks


def find_session(conn: sqlite3.Connection, subject_id: int, date: str) -> SessionRow | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, subject_id, date
        FROM attendance_sessions
        WHERE subject_id = ? AND date = ?
        """,
        (subject_id, date),
    )
    row = cur.fetchone()
    if not row:
        return None
    session_id = int(row[0])
    return {
        "id": session_id,
        "subject_id": int(row[1]),
        "date": str(row[2]),
        "marks": _load_marks(conn, [session_id])[session_id],
    }


def insert_session(conn: sqlite3.Connection, subject_id: int, date: str) -> int:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO attendance_sessions (subject_id, date)
        VALUES (?, ?)
        """,
        (subject_id, date),
    )
    return int(cur.lastrowid)


def save_marks(conn: sqlite3.Connection, session_id: int, marks: list[MarkRow]) -> None:
    """Replace the stored mark list of ``session_id`` with ``marks``, keeping order."""
    cur = conn.cursor()
    cur.execute("DELETE FROM attendance_marks WHERE session_id = ?", (session_id,))
    cur.executemany(
        """
        INSERT INTO attendance_marks (session_id, position, student_id, is_present)
        VALUES (?, ?, ?, ?)
        """,
        [
            (session_id, position, m["student_id"], 1 if m["is_present"] else 0)
            for position, m in enumerate(marks)
        ],
    )
    cur.execute(
        "UPDATE attendance_sessions SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (session_id,),
    )


def list_sessions(
    conn: sqlite3.Connection,
    *,
    subject_ids: list[int] | None = None,
    date_from: str | None = None,
    date_before: str | None = None,
) -> list[SessionRow]:
    """
    Sessions in store order, optionally limited to ``subject_ids`` and to
    ``date_from <= date < date_before``.
    """
    where: list[str] = []
    params: list = []

    if subject_ids is not None:
        if not subject_ids:
            return []
        where.append(f"subject_id IN ({_placeholders(subject_ids)})")
        params.extend(subject_ids)
    if date_from:
        where.append("date >= ?")
        params.append(date_from)
    if date_before:
        where.append("date < ?")
        params.append(date_before)

    where_clause = f"WHERE {' AND '.join(where)}" if where else ""
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT id, subject_id, date
        FROM attendance_sessions
        {where_clause}
        ORDER BY id
        """,
        params,
    )
    rows = cur.fetchall()
    marks = _load_marks(conn, [int(r[0]) for r in rows])
    return [
        {
            "id": int(r[0]),
            "subject_id": int(r[1]),
            "date": str(r[2]),
            "marks": marks[int(r[0])],
        }
        for r in rows
    ]


def list_student_marks(conn: sqlite3.Connection, student_id: int) -> list[StudentMarkRow]:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT s.id, s.date, sub.id, sub.name, m.is_present
        FROM attendance_marks m
        JOIN attendance_sessions s ON s.id = m.session_id
        JOIN subjects sub ON sub.id = s.subject_id
        WHERE m.student_id = ?
        ORDER BY s.id
        """,
        (student_id,),
    )
    return [
        {
            "session_id": int(r[0]),
            "date": str(r[1]),
            "subject_id": int(r[2]),
            "subject_name": str(r[3]),
            "is_present": bool(r[4]),
        }
        for r in cur.fetchall()
    ]
