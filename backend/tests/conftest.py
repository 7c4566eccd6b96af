import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
from backend.security import issue_session_token
from database.db import Database, add_student, add_subject


@pytest.fixture()
def store(tmp_path):
    db = Database(tmp_path / "rollbook_unit.db").open()
    yield db
    db.close()


@pytest.fixture()
def client(tmp_path, monkeypatch):
    test_db = tmp_path / "rollbook_test.db"

    # Point the app's store at a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(main, "DB_PATH", test_db)

    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def app_db(client) -> Database:
    return main.app.state.db


@pytest.fixture()
def auth_headers():
    def _headers(user_id: int, role: str, **kwargs) -> dict[str, str]:
        token, _claims = issue_session_token(user_id, role, **kwargs)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def seed():
    """Insert collaborator rows (subjects, students) directly into a store."""

    class Seeder:
        @staticmethod
        def subject(db: Database, name: str = "Math", code: str = "MATH101", teacher_id: int | None = None) -> int:
            with db.transaction() as conn:
                return add_subject(conn, name, code, teacher_id)["id"]

        @staticmethod
        def student(db: Database, name: str, email: str | None = None) -> int:
            with db.transaction() as conn:
                return add_student(conn, name, email or f"{name.lower().replace(' ', '.')}@school.test")["id"]

    return Seeder()
