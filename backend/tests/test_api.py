import pytest


@pytest.fixture()
def classroom(app_db, seed):
    return {
        "math": seed.subject(app_db, "Math", "MATH101", teacher_id=10),
        "art": seed.subject(app_db, "Art", "ART201", teacher_id=20),
        "s1": seed.student(app_db, "Ann"),
        "s2": seed.student(app_db, "Ben"),
        "s3": seed.student(app_db, "Cid"),
    }


def _submission(subject_id, date, *marks):
    return {
        "subjectId": subject_id,
        "date": date,
        "attendance": [{"studentId": s, "isPresent": p} for s, p in marks],
    }


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_protected_routes_require_bearer_token(client):
    for method, path in (("get", "/attendance"), ("post", "/attendance"), ("get", "/my-attendance")):
        res = getattr(client, method)(path)
        assert res.status_code == 401
        assert res.json()["detail"] == "Missing bearer token."
        assert res.json()["code"] == "UNAUTHENTICATED"
        assert res.headers["www-authenticate"] == "Bearer"


def test_invalid_scheme_and_expired_token_are_unauthenticated(client, auth_headers):
    res = client.get("/attendance", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid authorization scheme."

    res = client.get("/attendance", headers=auth_headers(1, "admin", ttl_seconds=-5))
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid or expired session token."

    res = client.get("/my-attendance", headers={"Authorization": "Bearer not.valid"})
    assert res.status_code == 401


def test_role_mismatch_is_forbidden(client, auth_headers, classroom):
    student = auth_headers(classroom["s1"], "student")
    res = client.get("/attendance", headers=student)
    assert res.status_code == 403
    assert res.json()["code"] == "FORBIDDEN"

    res = client.post("/attendance", json=_submission(classroom["math"], "2024-01-01"), headers=student)
    assert res.status_code == 403

    res = client.get("/my-attendance", headers=auth_headers(10, "teacher"))
    assert res.status_code == 403


def test_submit_creates_then_merges(client, auth_headers, classroom):
    teacher = auth_headers(10, "teacher")
    math, s1, s2, s3 = classroom["math"], classroom["s1"], classroom["s2"], classroom["s3"]

    res = client.post("/attendance", json=_submission(math, "2024-01-01", (s1, True), (s2, False)), headers=teacher)
    assert res.status_code == 201
    created = res.json()
    assert created["subjectId"] == math
    assert created["date"] == "2024-01-01"

    res = client.post("/attendance", json=_submission(math, "2024-01-01", (s2, True), (s3, True)), headers=teacher)
    assert res.status_code == 200
    updated = res.json()
    assert updated["id"] == created["id"]
    assert updated["attendance"] == [
        {"studentId": s1, "isPresent": True},
        {"studentId": s2, "isPresent": True},
        {"studentId": s3, "isPresent": True},
    ]


def test_resubmitting_same_payload_is_idempotent(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    body = _submission(classroom["art"], "2024-01-05", (classroom["s1"], False), (classroom["s2"], True))

    first = client.post("/attendance", json=body, headers=admin)
    second = client.post("/attendance", json=body, headers=admin)
    assert (first.status_code, second.status_code) == (201, 200)
    assert second.json() == first.json()

    roster = client.get("/attendance", headers=admin).json()
    assert len(roster) == 1


@pytest.mark.parametrize(
    "body",
    [
        {"date": "2024-01-01", "attendance": []},
        {"subjectId": 1, "attendance": []},
        {"subjectId": 1, "date": "2024-01-01"},
        {"subjectId": 1, "date": "not-a-date", "attendance": []},
        {"subjectId": 1, "date": "2024-01-01", "attendance": [{"studentId": 1}]},
        {"subjectId": 1, "date": "2024-01-01", "attendance": [{"isPresent": True}]},
        {"subjectId": 1, "date": "2024-01-01", "attendance": [{"studentId": 1, "isPresent": "maybe"}]},
        {"subjectId": -3, "date": "2024-01-01", "attendance": []},
        {"subjectId": 1, "date": "2024-01-01", "attendance": [{"studentId": True, "isPresent": True}]},
        {"subjectId": 1, "date": "2024-01-01", "attendance": [{"studentId": "1", "isPresent": True}]},
        {"subjectId": "1", "date": "2024-01-01", "attendance": []},
    ],
)
def test_malformed_submission_is_rejected(client, auth_headers, classroom, body):
    res = client.post("/attendance", json=body, headers=auth_headers(1, "admin"))
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_unknown_subject_or_student_is_not_found(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    res = client.post("/attendance", json=_submission(999, "2024-01-01", (classroom["s1"], True)), headers=admin)
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"

    res = client.post("/attendance", json=_submission(classroom["math"], "2024-01-01", (999, True)), headers=admin)
    assert res.status_code == 404
    assert client.get("/attendance", headers=admin).json() == []


def test_teacher_roster_is_scoped_to_own_subjects(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    client.post("/attendance", json=_submission(classroom["math"], "2024-01-01", (classroom["s1"], True)), headers=admin)
    client.post("/attendance", json=_submission(classroom["art"], "2024-01-01", (classroom["s2"], True)), headers=admin)

    teacher_roster = client.get("/attendance", headers=auth_headers(10, "teacher")).json()
    assert [r["subject"]["name"] for r in teacher_roster] == ["Math"]
    assert teacher_roster[0]["attendance"] == [
        {"student": {"id": classroom["s1"], "name": "Ann", "email": "ann@school.test"}, "isPresent": True},
    ]

    assert len(client.get("/attendance", headers=admin).json()) == 2
    assert client.get("/attendance", headers=auth_headers(30, "teacher")).json() == []


def test_roster_date_range_is_end_inclusive(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    client.post("/attendance", json=_submission(classroom["math"], "2024-01-01", (classroom["s1"], True)), headers=admin)
    client.post("/attendance", json=_submission(classroom["math"], "2024-01-02", (classroom["s1"], False)), headers=admin)

    res = client.get(
        "/attendance",
        params={"startDate": "2024-01-01", "endDate": "2024-01-01"},
        headers=admin,
    )
    assert res.status_code == 200
    assert [r["date"] for r in res.json()] == ["2024-01-01"]

    res = client.get("/attendance", params={"startDate": "January"}, headers=admin)
    assert res.status_code == 400


def test_my_attendance_lists_only_own_marks(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    client.post(
        "/attendance",
        json=_submission(classroom["math"], "2024-01-01", (classroom["s1"], True), (classroom["s2"], False)),
        headers=admin,
    )
    client.post("/attendance", json=_submission(classroom["art"], "2024-01-02", (classroom["s1"], False)), headers=admin)

    res = client.get("/my-attendance", headers=auth_headers(classroom["s2"], "student"))
    assert res.status_code == 200
    body = res.json()
    assert len(body) == 1
    assert body[0]["subjectName"] == "Math"
    assert body[0]["isPresent"] is False
    assert body[0]["isMarked"] is True
    assert set(body[0]) == {"sessionId", "date", "subjectName", "isPresent", "isMarked"}

    mine = client.get("/my-attendance", headers=auth_headers(classroom["s1"], "student")).json()
    assert [(r["subjectName"], r["isPresent"]) for r in mine] == [("Math", True), ("Art", False)]

    assert client.get("/my-attendance", headers=auth_headers(classroom["s3"], "student")).json() == []


def test_auth_me_echoes_identity(client, auth_headers):
    res = client.get("/auth/me", headers=auth_headers(42, "teacher"))
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == 42
    assert body["role"] == "teacher"
    assert body["expiresAt"] > body["issuedAt"]


def test_directory_endpoints(client, auth_headers):
    admin = auth_headers(1, "admin")

    res = client.post("/subjects", json={"name": "Physics", "code": "PHY1", "teacherId": 10}, headers=admin)
    assert res.status_code == 201
    assert res.json()["teacherId"] == 10
    assert [s["name"] for s in client.get("/subjects").json()] == ["Physics"]

    res = client.post("/students", json={"name": "Dee", "email": "dee@school.test"}, headers=admin)
    assert res.status_code == 201
    res = client.post("/students", json={"name": "Dee Two", "email": "DEE@school.test"}, headers=admin)
    assert res.status_code == 409
    assert res.json()["code"] == "CONFLICT"

    res = client.get("/students", headers=auth_headers(10, "teacher"))
    assert res.status_code == 200
    assert [s["email"] for s in res.json()] == ["dee@school.test"]

    res = client.post("/subjects", json={"name": "Chem", "code": "CH1"}, headers=auth_headers(10, "teacher"))
    assert res.status_code == 403
    res = client.get("/students", headers=auth_headers(5, "student"))
    assert res.status_code == 403


def test_coerced_ids_never_record_attendance(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    body = {
        "subjectId": classroom["math"],
        "date": "2024-01-01",
        "attendance": [{"studentId": True, "isPresent": True}],
    }
    res = client.post("/attendance", json=body, headers=admin)
    assert res.status_code == 400
    assert client.get("/attendance", headers=admin).json() == []


def test_delete_student(client, auth_headers, classroom):
    admin = auth_headers(1, "admin")
    client.post("/attendance", json=_submission(classroom["math"], "2024-01-01", (classroom["s1"], True)), headers=admin)

    res = client.delete(f"/students/{classroom['s1']}", headers=admin)
    assert res.status_code == 409
    assert res.json()["code"] == "CONFLICT"

    res = client.delete(f"/students/{classroom['s3']}", headers=auth_headers(10, "teacher"))
    assert res.status_code == 403

    res = client.delete(f"/students/{classroom['s3']}", headers=admin)
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert classroom["s3"] not in [s["id"] for s in client.get("/students", headers=admin).json()]

    res = client.delete(f"/students/{classroom['s3']}", headers=admin)
    assert res.status_code == 404

    roster = client.get("/attendance", headers=admin).json()
    assert roster[0]["attendance"][0]["student"]["id"] == classroom["s1"]
