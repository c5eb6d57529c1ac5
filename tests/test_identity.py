import asyncio

import pytest

from conftest import run
from identity import DENIED, GRANTED, PENDING, IdentityError, IdentityService, has_role
from remote_data import UserManagement


@pytest.fixture
def service(db):
    return IdentityService(db)


def test_sign_up_and_sign_in(service):
    user = run(service.sign_up("Alice@Example.com", "secret1", "alice"))
    assert user["email"] == "alice@example.com"
    token = run(service.sign_in("alice@example.com", "secret1"))
    assert token
    session_user = run(service.get_session_user(token))
    assert session_user["id"] == user["id"]
    assert run(service.fetch_user_role(user["id"])) == "user"


def test_sign_up_rejects_bad_input(service):
    with pytest.raises(IdentityError):
        run(service.sign_up("not-an-email", "secret1"))
    with pytest.raises(IdentityError):
        run(service.sign_up("bob@example.com", "123"))
    run(service.sign_up("bob@example.com", "secret1"))
    with pytest.raises(IdentityError):
        run(service.sign_up("BOB@example.com", "secret2"))


def test_wrong_password(service):
    run(service.sign_up("carol@example.com", "secret1"))
    assert run(service.sign_in("carol@example.com", "wrong!!")) is None
    assert run(service.sign_in("nobody@example.com", "secret1")) is None


def test_tampered_token_has_no_user(service):
    run(service.sign_up("dan@example.com", "secret1"))
    token = run(service.sign_in("dan@example.com", "secret1"))
    assert run(service.get_session_user(token + "x")) is None
    assert run(service.get_session_user(None)) is None


def test_check_applies_role_hierarchy(db, service):
    user = run(service.sign_up("erin@example.com", "secret1"))
    token = run(service.sign_in("erin@example.com", "secret1"))
    assert run(service.check(token, "user"))[0] == GRANTED
    assert run(service.check(token, "developer"))[0] == DENIED
    run(UserManagement(db).set_user_role(user["id"], "admin"))
    decision, ctx = run(service.check(token, "developer"))
    assert decision == GRANTED
    assert ctx.role == "admin" and ctx.user_id == user["id"]


def test_check_without_session_is_denied(service):
    decision, ctx = run(service.check(None, "user"))
    assert decision == DENIED and not ctx.authenticated


def test_check_is_pending_until_resolved(service, monkeypatch):
    async def slow_context(token):
        await asyncio.sleep(1)

    monkeypatch.setattr(service, "context", slow_context)
    decision, ctx = run(service.check("anything", "user", timeout=0.01))
    assert decision == PENDING
    assert not ctx.authenticated


def test_has_role():
    assert has_role("admin", "user")
    assert has_role("developer", "developer")
    assert not has_role("user", "admin")
    assert not has_role(None, "user")

def test_sign_up_race_reports_duplicate(db, service, monkeypatch):
    import sqlite3

    import identity

    class RacingContext:
        def hash(self, password):
            # another sign-up lands after the existence check, before our insert
            conn = sqlite3.connect(db.path)
            conn.execute("INSERT INTO users (email, username, password_hash) VALUES (?,?,?)", ("race@example.com", "r", "x"))
            conn.commit()
            conn.close()
            return "hashed"

    monkeypatch.setattr(identity, "pwd_context", RacingContext())
    with pytest.raises(IdentityError):
        run(service.sign_up("race@example.com", "secret1"))
