import json
import time
import logging
import secrets
from datetime import datetime
from typing import Optional, List, Dict, Any

from auth_context import AuthContext, LOCAL_SCHEME, anonymous, role_allows
from storage import Database, KeyValueStore, local_scope, session_scope, scan_key
import settings

logger = logging.getLogger(__name__)

AUTH_KEY = "auth_user"
# everything the broad logout wipe removes from a client's local scope
CACHE_KEYS = ["auth_user", "adFunnelConfig", "backend.auth.token", "backend.auth.refreshToken"]

SESSION_TIMEOUT = settings.LOCAL_SESSION_HOURS * 3600
IDLE_TIMEOUT = settings.LOCAL_IDLE_HOURS * 3600

_CREATED_AT = datetime.now().isoformat()

HARDCODED_USERS: List[Dict[str, str]] = [
    {"id": "1", "username": "pikachu", "password": "Ad@123", "role": "admin", "created_at": _CREATED_AT},
    {"id": "2", "username": "fkingdev", "password": "Fd@123", "role": "developer", "created_at": _CREATED_AT},
]

PROTECTED_PATHS = {"/admin": "admin", "/developer": "developer"}


def record_is_valid(record: Optional[Dict[str, Any]], now: Optional[float] = None) -> bool:
    if not record or not record.get("loggedIn"):
        return False
    now = time.time() if now is None else now
    try:
        session_start = float(record.get("sessionStart") or now)
        last_activity = float(record.get("lastActivity") or now)
    except (TypeError, ValueError):
        logger.info(f"Session for {record.get('username')} has unreadable timestamps")
        return False
    if now - session_start >= SESSION_TIMEOUT:
        logger.info(f"Session for {record.get('username')} expired (timeout)")
        return False
    if now - last_activity >= IDLE_TIMEOUT:
        logger.info(f"Session for {record.get('username')} expired (inactivity)")
        return False
    return True


def _parse_record(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class LocalAuth:
    """Hardcoded admin/developer credentials with a per-client session record."""

    def __init__(self, local: KeyValueStore, session: KeyValueStore):
        self.local = local
        self.session = session

    @classmethod
    def for_client(cls, db: Database, client_id: str) -> "LocalAuth":
        return cls(KeyValueStore(db, local_scope(client_id)), KeyValueStore(db, session_scope(client_id)))

    async def clear_all_cache(self) -> None:
        for key in CACHE_KEYS:
            try:
                await self.local.remove(key)
            except Exception as e:
                logger.warning(f"Failed to remove key {key}: {e}")
        try:
            await self.session.clear()
        except Exception as e:
            logger.warning(f"Failed to clear session storage: {e}")

    async def login(self, username: str, password: str, now: Optional[float] = None) -> Optional[Dict[str, str]]:
        await self.clear_all_cache()
        user = None
        for u in HARDCODED_USERS:
            if secrets.compare_digest(u["username"], str(username or "")) and secrets.compare_digest(
                u["password"], str(password or "")
            ):
                user = u
                break
        if not user:
            logger.info(f"Login failed for {username!r}: invalid credentials")
            return None
        now = time.time() if now is None else now
        record = {
            "username": user["username"],
            "role": user["role"],
            "loggedIn": True,
            "sessionStart": now,
            "lastActivity": now,
        }
        try:
            await self.local.set(AUTH_KEY, json.dumps(record))
        except Exception as e:
            logger.error(f"Login error for {username!r}: {e}")
            return None
        logger.info(f"Login successful for {user['username']} ({user['role']})")
        return {k: user[k] for k in ("id", "username", "role", "created_at")}

    async def logout(self) -> None:
        await self.clear_all_cache()

    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        return _parse_record(await self.local.get(AUTH_KEY))

    async def is_session_valid(self, now: Optional[float] = None) -> bool:
        return record_is_valid(await self.get_current_user(), now)

    async def is_authenticated(self, now: Optional[float] = None) -> bool:
        record = await self.get_current_user()
        valid = record_is_valid(record, now)
        if record and record.get("loggedIn") and not valid:
            logger.info("Session invalid, clearing cache")
            await self.clear_all_cache()
        return valid

    async def update_last_activity(self, now: Optional[float] = None) -> None:
        record = await self.get_current_user()
        if not record or not record.get("loggedIn"):
            return
        record["lastActivity"] = time.time() if now is None else now
        try:
            await self.local.set(AUTH_KEY, json.dumps(record))
        except Exception as e:
            logger.error(f"Failed to update last activity: {e}")

    async def get_user_role(self) -> Optional[str]:
        record = await self.get_current_user()
        return record.get("role") if record and record.get("loggedIn") else None

    async def has_role(self, role: str) -> bool:
        record = await self.get_current_user()
        return bool(record and record.get("loggedIn")) and role_allows(record.get("role"), role, hierarchical=False)

    async def context(self, now: Optional[float] = None) -> AuthContext:
        if not await self.is_authenticated(now):
            return anonymous(LOCAL_SCHEME)
        record = await self.get_current_user() or {}
        return AuthContext(
            scheme=LOCAL_SCHEME,
            authenticated=True,
            principal=record.get("username"),
            role=record.get("role"),
        )


async def sweep_sessions(db: Database, now: Optional[float] = None) -> int:
    """Clear every stored hardcoded-auth session that is no longer valid."""
    cleared = 0
    for scope, raw in await scan_key(db, AUTH_KEY, "local:"):
        record = _parse_record(raw)
        if record_is_valid(record, now):
            continue
        client_id = scope.split(":", 1)[1]
        await LocalAuth.for_client(db, client_id).clear_all_cache()
        cleared += 1
    if cleared:
        logger.info(f"Session sweep cleared {cleared} invalid session(s)")
    return cleared


def protected_role(path: str) -> Optional[str]:
    for prefix, role in PROTECTED_PATHS.items():
        if path == prefix or path.startswith(prefix + "/"):
            return role
    return None
