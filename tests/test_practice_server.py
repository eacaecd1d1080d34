from fastapi.testclient import TestClient

from conftest import FakeClock
from quiz_portal.core.models import UserRole
from quiz_portal.server.practice_server import create_practice_app
from quiz_portal.server.practice_store import (
    DEMO_LECTURER_EMAIL,
    DEMO_PASSWORD,
    PracticeStore,
    pwd_context,
    seed_demo_content,
)


def _client(store: PracticeStore | None = None) -> tuple[TestClient, PracticeStore]:
    store = store or PracticeStore()
    seed_demo_content(store)
    return TestClient(create_practice_app(store)), store


def _login(client: TestClient, email: str) -> dict[str, str]:
    r = client.post("/api/auth/login", json={"email": email, "password": DEMO_PASSWORD})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['token']}"}


def test_health():
    client, _ = _client()
    r = client.get("/api/test")
    assert r.status_code == 200
    assert r.json()["message"] == "API is working"


def test_errors_use_message_bodies():
    client, _ = _client()
    r = client.get("/api/quizzes")
    assert r.status_code == 401
    assert r.json() == {"message": "Not authorized, no token"}

    r = client.get("/api/quizzes/missing", headers=_login(client, DEMO_LECTURER_EMAIL))
    assert r.status_code == 404
    assert r.json() == {"message": "Quiz not found"}


def test_only_students_can_self_register():
    client, _ = _client()
    body = {"name": "Eve", "username": "eve", "email": "eve@example.com", "password": "secret1", "role": "lecturer"}
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 403

    body["role"] = "student"
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 201
    assert r.json()["token"]
    assert r.json()["role"] == "student"


def test_export_rejects_unknown_formats():
    client, _ = _client()
    headers = _login(client, DEMO_LECTURER_EMAIL)
    quiz_id = client.get("/api/quizzes", headers=headers).json()[0]["_id"]

    r = client.get(f"/api/quizzes/{quiz_id}/export", params={"format": "pdf"}, headers=headers)
    assert r.status_code == 400

    r = client.get(f"/api/quizzes/{quiz_id}/export", params={"format": "csv"}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")


def test_student_quiz_view_hides_correct_answers():
    client, _ = _client()
    headers = _login(client, "student@example.com")
    quiz = client.get("/api/student/quizzes", headers=headers).json()[0]

    options = [option for question in quiz["questions"] for option in question["options"]]
    assert options
    assert all("isCorrect" not in option for option in options)


def test_invalid_request_bodies_use_message_bodies():
    client, _ = _client()
    headers = _login(client, DEMO_LECTURER_EMAIL)
    quiz_id = client.get("/api/quizzes", headers=headers).json()[0]["_id"]

    r = client.post(
        f"/api/quizzes/{quiz_id}/questions",
        json={"questionType": "essay", "options": []},
        headers=headers,
    )
    assert r.status_code == 422
    assert r.json() == {"message": "questionText: Field required"}


def test_passwords_are_stored_as_salted_bcrypt_hashes():
    store = PracticeStore()
    store.add_user(name="A", username="a", email="a@example.com", password="secret1")
    store.add_user(name="B", username="b", email="b@example.com", password="secret1")
    first, second = (account.password_hash for account in store._accounts.values())

    assert first != second
    assert pwd_context.identify(first) == "bcrypt"
    assert pwd_context.verify("secret1", first)

    client, _ = _client(store)
    r = client.post("/api/auth/login", json={"email": "a@example.com", "password": "secret2"})
    assert r.status_code == 401
    assert r.json() == {"message": "Invalid email or password"}


def test_tokens_expire_and_are_pruned():
    clock = FakeClock()
    store = PracticeStore(clock=clock, token_ttl_seconds=60)
    store.add_user(name="L", username="l", email="l@example.com", password="secret1", role=UserRole.LECTURER)
    client, _ = _client(store)

    r = client.post("/api/auth/login", json={"email": "l@example.com", "password": "secret1"})
    headers = {"Authorization": f"Bearer {r.json()['token']}"}
    assert client.get("/api/quizzes", headers=headers).status_code == 200

    clock.advance(61)
    r = client.get("/api/quizzes", headers=headers)
    assert r.status_code == 401
    assert r.json() == {"message": "Not authorized, token failed"}

    client.post("/api/auth/login", json={"email": "l@example.com", "password": "secret1"})
    clock.advance(30)
    client.post("/api/auth/login", json={"email": "l@example.com", "password": "secret1"})
    assert store.active_token_count() == 2
    clock.advance(45)
    client.post("/api/auth/login", json={"email": "l@example.com", "password": "secret1"})
    assert store.active_token_count() == 2
