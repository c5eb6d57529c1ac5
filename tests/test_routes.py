import asyncio
import json

from conftest import run

import main
import settings
from auth_local import AUTH_KEY
from storage import KeyValueStore, local_scope, session_scope


def _client_id(client):
    return main.client_signer.unsign(client.cookies["cid"]).decode()


def _login(client, username="pikachu", password="Ad@123"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def _user_signin(client, email="user@example.com", password="secret1"):
    client.post("/api/user/signup", json={"email": email, "password": password})
    return client.post("/api/user/signin", json={"email": email, "password": password})


def test_root_redirects_to_first_page(client):
    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/ad/1"


def test_invalid_pages_redirect_to_first_page(client):
    for path in ("/ad/abc", "/ad/0", "/ad/9"):
        r = client.get(path, follow_redirects=False)
        assert r.status_code == 302 and r.headers["location"] == "/ad/1"


def test_ad_page_renders_and_sets_client_cookie(client):
    r = client.get("/ad/1")
    assert "Step 1 of 4" in r.text
    assert "Premium VPN Service" in r.text
    assert "cid" in client.cookies


def test_next_is_gated_by_countdown(client):
    client.get("/ad/1")
    r = client.post("/ad/1/next", follow_redirects=False)
    assert r.status_code == 425
    status = client.get("/api/funnel/1/status").json()
    assert status["countdown"] == 10 and status["complete"] is False and status["next"] is None

    session = KeyValueStore(main.db, session_scope(_client_id(client)))
    run(session.set("funnel.entered.1", "0"))
    r = client.post("/ad/1/next", follow_redirects=False)
    assert r.status_code == 303 and r.headers["location"] == "/ad/2"


def test_unknown_status_page(client):
    assert client.get("/api/funnel/9/status").status_code == 404


def test_ad_click_redirects_and_counts(client):
    r = client.get("/ad/1/click/ad1", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "https://example.com/vpn"
    r = client.get("/ad/1/click/ad5", follow_redirects=False)
    assert r.headers["location"] == "/ad/1"
    config = run(main.funnel_store.load())
    assert config.analytics.ad_clicks == {"ad1": 1}


def test_download(client):
    r = client.get("/download")
    assert r.status_code == 200 and "Premium Software Suite v2.0" in r.text
    r = client.post("/download", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "https://example.com/download/software.exe"
    config = run(main.funnel_store.load())
    assert config.analytics.total_downloads == 1
    assert config.analytics.page_visits[5] == 1


def test_unknown_short_link(client):
    r = client.get("/s/nothing")
    assert r.status_code == 404 and "Short link not found" in r.text


def test_console_requires_login(client):
    r = client.get("/admin", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/login"
    assert client.get("/api/admin/config").status_code == 401


def test_admin_login_and_role_mismatch(client):
    r = _login(client)
    assert r.status_code == 200 and r.json()["redirect"] == "/admin"
    assert client.get("/api/auth/check").json()["status"] == "authenticated"
    r = client.get("/admin")
    assert r.status_code == 200 and "Admin Dashboard" in r.text
    r = client.get("/login", follow_redirects=False)
    assert r.headers["location"] == "/admin"

    r = client.get("/developer", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/login"
    # the mismatch logged the admin out
    assert client.get("/admin", follow_redirects=False).status_code == 302


def test_bad_login_is_throttled(client):
    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        assert _login(client, password="wrong").status_code == 401
    assert _login(client).status_code == 429


def test_logout(client):
    _login(client)
    assert client.post("/api/auth/logout").json() == {"status": "ok"}
    assert client.get("/api/auth/check").json() == {"status": "guest"}


def test_console_config_api(client):
    _login(client, "fkingdev", "Fd@123")
    body = client.get("/api/admin/config").json()
    config, version = body["config"], body["version"]
    config["softwareName"] = "Edited"
    assert client.post("/api/admin/config/save", json={"config": config, "version": version}).status_code == 200
    r = client.post("/api/admin/config/save", json={"config": config, "version": version})
    assert r.status_code == 409

    r = client.post("/api/admin/config/import", json={"text": "{oops"})
    assert r.status_code == 400
    r = client.get("/api/admin/config/export")
    assert "attachment" in r.headers["content-disposition"]
    assert '"softwareName": "Edited"' in r.text

    assert client.post("/api/admin/config/reset").json() == {"status": "ok"}
    assert client.get("/api/admin/config").json()["config"]["softwareName"] == "Premium Software Suite v2.0"


def test_console_ads_and_settings(client):
    _login(client)
    ad = client.post(
        "/api/admin/ad/add",
        json={"title": "New", "image_url": "https://img", "link_url": "https://go", "assigned_page": 2},
    ).json()
    assert ad["assignedPage"] == 2
    r = client.post("/api/admin/ad/update", json={"id": ad["id"], "assigned_page": 3})
    assert r.json()["assignedPage"] == 3
    assert client.post("/api/admin/ad/update", json={"id": "nope", "title": "x"}).status_code == 404
    assert client.post("/api/admin/ad/add", json={"title": "x", "image_url": "i", "link_url": "l", "assigned_page": 8}).status_code == 400
    assert client.post("/api/admin/ad/delete", json={"id": ad["id"]}).status_code == 200
    assert client.post("/api/admin/ad/delete", json={"id": ad["id"]}).status_code == 404

    r = client.post("/api/admin/settings", json={"countdowns": {"1": 3}, "software_name": "Renamed"})
    assert r.status_code == 200 and r.json()["pages"][0]["countdown"] == 3
    assert client.get("/api/admin/analytics").json()["conversionRate"] == "0.00"


def test_console_short_links(client):
    _login(client)
    link = client.post("/api/admin/link/add", json={"url": "https://example.com/x", "short_code": "deal"}).json()
    assert link["short_code"] == "deal"
    assert client.post("/api/admin/link/add", json={"url": "https://example.com/y", "short_code": "deal"}).status_code == 409
    assert client.post("/api/admin/link/add", json={"url": "nope"}).status_code == 400
    r = client.get("/s/deal", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "https://example.com/x"
    assert client.get("/api/admin/links").json()[0]["click_count"] == 1
    assert client.post("/api/admin/link/delete", json={"id": link["id"]}).status_code == 200


def test_user_management_is_developer_only(client):
    _login(client)
    assert client.get("/api/admin/users").status_code == 403
    _login(client, "fkingdev", "Fd@123")
    assert client.get("/api/admin/users").json() == []


def test_user_dashboard_requires_session(client):
    r = client.get("/user/dashboard", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/user/login"
    assert client.get("/api/user/data").status_code == 401


def test_user_signin_and_data(client):
    r = _user_signin(client)
    assert r.status_code == 200 and r.json()["redirect"] == "/user/dashboard"
    assert client.get("/api/user/session").json()["email"] == "user@example.com"
    assert client.get("/api/user/data").json()["countdown"] == 30
    assert client.post("/api/user/countdown", json={"countdown": 2}).status_code == 400
    assert client.post("/api/user/countdown", json={"countdown": 60}).status_code == 200
    link = client.post("/api/user/link/add", json={"url": "https://example.com/u", "short_code": "mine"}).json()
    assert link["shortCode"] == "mine"
    r = client.get("/user/dashboard")
    assert r.status_code == 200 and "My Dashboard" in r.text
    assert client.get("/api/user/admin/users").status_code == 403

    client.post("/api/user/logout")
    assert client.get("/api/user/data").status_code == 401


def test_user_signup_duplicate(client):
    assert client.post("/api/user/signup", json={"email": "dup@example.com", "password": "secret1"}).status_code == 200
    assert client.post("/api/user/signup", json={"email": "dup@example.com", "password": "secret1"}).status_code == 400


def test_bad_user_credentials(client):
    r = client.post("/api/user/signin", json={"email": "ghost@example.com", "password": "secret1"})
    assert r.status_code == 401


def test_pending_session_shows_loading(client, monkeypatch):
    async def slow_context(token):
        await asyncio.sleep(1)

    monkeypatch.setattr(main.identity, "context", slow_context)
    monkeypatch.setattr(settings, "AUTH_RESOLVE_TIMEOUT", 0.01)
    r = client.get("/user/dashboard", follow_redirects=False)
    assert r.status_code == 200 and "Loading" in r.text
    assert client.get("/api/user/data").status_code == 503


def test_user_link_delete_keeps_dashboard_in_sync(client):
    _user_signin(client, "links@example.com")
    link = client.post("/api/user/link/add", json={"url": "https://example.com/z", "short_code": "zed"}).json()
    assert client.post("/api/user/link/delete", json={"id": int(link["id"])}).status_code == 200
    assert client.get("/api/user/data").json()["short_links"] == []
    assert client.get("/s/zed").status_code == 404
    assert client.post("/api/user/link/delete", json={"id": int(link["id"])}).status_code == 404


def test_developer_can_edit_user_data(client):
    assert _user_signin(client, "dev@example.com").status_code == 200
    user_id = client.get("/api/user/session").json()["user_id"]
    body = {"user_id": user_id, "updates": {"countdown": 90}}
    assert client.post("/api/user/admin/user_data", json=body).status_code == 403

    run(main.user_management.set_user_role(user_id, "developer"))
    client.get("/api/user/data")
    assert client.post("/api/user/admin/user_data", json=body).json() == {"status": "ok"}
    assert client.get("/api/user/data").json()["countdown"] == 90
    bad = {"user_id": user_id, "updates": {"countdown": 0}}
    assert client.post("/api/user/admin/user_data", json=bad).status_code == 400


def test_corrupt_console_session_redirects_to_login(client):
    client.get("/login")
    record = {"username": "pikachu", "role": "admin", "loggedIn": True, "sessionStart": "not-a-time"}
    run(KeyValueStore(main.db, local_scope(_client_id(client))).set(AUTH_KEY, json.dumps(record)))
    r = client.get("/admin", follow_redirects=False)
    assert r.status_code == 302 and r.headers["location"] == "/login"


def test_console_page_offers_edit_actions(client):
    _login(client)
    client.post("/api/admin/link/add", json={"url": "https://example.com/q", "short_code": "qq"})
    html = client.get("/admin").text
    for hook in ("/api/admin/ad/add", "/api/admin/ad/delete", "/api/admin/settings", "/api/admin/link/delete",
                 "/api/admin/config/import", "/api/admin/config/export", "/api/admin/config/reset"):
        assert hook in html
    assert 'data-page="4"' in html and "qq" in html
