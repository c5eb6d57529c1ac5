import json
import string
import secrets
import logging
import re
from datetime import datetime
from urllib.parse import urlparse
from typing import Optional, List, Dict, Any

import aiosqlite

from auth_context import ROLES
from storage import Database

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_letters + string.digits
CUSTOM_CODE_RE = re.compile(r"^[a-zA-Z0-9-]+$")
MIN_COUNTDOWN = 5
MAX_COUNTDOWN = 300
DEFAULT_COUNTDOWN = 30


class DataAccessError(Exception):
    pass


class ShortCodeTaken(DataAccessError):
    pass


def default_user_analytics() -> Dict[str, Any]:
    return {"totalClicks": 0, "totalViews": 0, "popularLinks": [], "adPerformance": []}


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(str(url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def generate_short_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_custom_code(code: str) -> str:
    code = str(code or "").strip()
    if not CUSTOM_CODE_RE.match(code):
        raise ValueError("Custom short code can only contain letters, numbers, and hyphens")
    return code.lower()


def _decode_json(value: Any, default: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return default
    if value is None:
        return default
    return value


def _transform_user_data(row: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    ads = _decode_json(d.get("ads"), [])
    links = _decode_json(d.get("short_links"), [])
    d["ads"] = ads if isinstance(ads, list) else []
    d["short_links"] = links if isinstance(links, list) else []
    analytics = _decode_json(d.get("analytics"), None)
    d["analytics"] = analytics if isinstance(analytics, dict) else default_user_analytics()
    return d


def _short_link_row(r) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "short_code": r["short_code"],
        "original_url": r["original_url"],
        "click_count": int(r["click_count"] or 0),
        "user_id": r["user_id"],
        "created_at": r["created_at"],
    }


class ShortLinks:
    def __init__(self, db: Database):
        self.db = db

    async def list_short_links(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                if user_id is None:
                    rows = await (await db.execute("SELECT * FROM short_links ORDER BY created_at DESC, id DESC")).fetchall()
                else:
                    rows = await (
                        await db.execute(
                            "SELECT * FROM short_links WHERE user_id=? ORDER BY created_at DESC, id DESC", (user_id,)
                        )
                    ).fetchall()
        except Exception as e:
            logger.error(f"Error fetching short links: {e}")
            return []
        return [_short_link_row(r) for r in rows]

    async def create_short_link(
        self, original_url: str, short_code: Optional[str] = None, user_id: Optional[int] = None
    ) -> Dict[str, Any]:
        original_url = str(original_url or "").strip()
        if not is_valid_url(original_url):
            raise ValueError("Please enter a valid URL")
        code = normalize_custom_code(short_code) if short_code and str(short_code).strip() else generate_short_code()
        if not code:
            raise ValueError("Invalid short code")
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                if await (await db.execute("SELECT 1 FROM short_links WHERE short_code=?", (code,))).fetchone():
                    raise ShortCodeTaken("This short code is already taken")
                cur = await db.execute(
                    "INSERT INTO short_links (short_code, original_url, user_id) VALUES (?,?,?)",
                    (code, original_url, user_id),
                )
                await db.commit()
                row = await (await db.execute("SELECT * FROM short_links WHERE id=?", (cur.lastrowid,))).fetchone()
        except DataAccessError:
            raise
        except Exception as e:
            logger.error(f"Error creating short link: {e}")
            raise DataAccessError("Failed to create short link") from e
        logger.info(f"Created short link {code}")
        return _short_link_row(row)

    async def delete_short_link(self, link_id: int, user_id: Optional[int] = None) -> bool:
        try:
            async with self.db.connect() as db:
                if user_id is None:
                    cur = await db.execute("DELETE FROM short_links WHERE id=?", (link_id,))
                else:
                    cur = await db.execute("DELETE FROM short_links WHERE id=? AND user_id=?", (link_id, user_id))
                await db.commit()
        except Exception as e:
            logger.error(f"Error deleting short link: {e}")
            raise DataAccessError("Failed to delete short link") from e
        return cur.rowcount > 0

    async def resolve_short_link(self, code: str) -> Optional[str]:
        code = str(code or "").strip()
        if not code:
            return None
        try:
            async with self.db.connect() as db:
                row = await (await db.execute("SELECT original_url FROM short_links WHERE short_code=?", (code,))).fetchone()
                if not row:
                    return None
                await db.execute("UPDATE short_links SET click_count=click_count+1 WHERE short_code=?", (code,))
                await db.commit()
        except Exception as e:
            logger.error(f"Error resolving short link {code}: {e}")
            return None
        return str(row[0])

    async def click_counts(self, user_id: int) -> Dict[str, int]:
        return {l["short_code"]: l["click_count"] for l in await self.list_short_links(user_id)}


class UserDataAPI:
    """Per-user bundle of ads, countdown, short links and analytics."""

    def __init__(self, db: Database, links: ShortLinks):
        self.db = db
        self.links = links

    async def get_user_data(self, user_id: int) -> Optional[Dict[str, Any]]:
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                row = await (await db.execute("SELECT * FROM users_data WHERE user_id=?", (user_id,))).fetchone()
        except Exception as e:
            logger.error(f"Error fetching user data: {e}")
            return None
        if not row:
            return None
        data = _transform_user_data(dict(row))
        counts = await self.links.click_counts(user_id)
        for link in data["short_links"]:
            if isinstance(link, dict) and link.get("shortCode") in counts:
                link["clickCount"] = counts[link["shortCode"]]
        return data

    async def get_or_create_user_data(self, user_id: int) -> Dict[str, Any]:
        existing = await self.get_user_data(user_id)
        if existing:
            return existing
        try:
            async with self.db.connect() as db:
                await db.execute(
                    "INSERT OR IGNORE INTO users_data (user_id, ads, countdown, short_links, analytics) VALUES (?,?,?,?,?)",
                    (user_id, "[]", DEFAULT_COUNTDOWN, "[]", json.dumps(default_user_analytics())),
                )
                await db.commit()
        except Exception as e:
            logger.error(f"Error creating user data: {e}")
            raise DataAccessError("Failed to create user data") from e
        created = await self.get_user_data(user_id)
        if not created:
            raise DataAccessError("Failed to create user data")
        return created

    async def _update(self, user_id: int, fields: Dict[str, Any]) -> None:
        cols = ",".join(f"{k}=?" for k in fields)
        params = list(fields.values()) + [user_id]
        try:
            async with self.db.connect() as db:
                cur = await db.execute(f"UPDATE users_data SET {cols}, updated_at=CURRENT_TIMESTAMP WHERE user_id=?", params)
                await db.commit()
        except Exception as e:
            logger.error(f"Error updating user data ({', '.join(fields)}): {e}")
            raise DataAccessError("Failed to update user data") from e
        if cur.rowcount == 0:
            raise DataAccessError("No user data to update")

    async def update_ads(self, user_id: int, ads: List[Dict[str, Any]]) -> None:
        await self._update(user_id, {"ads": json.dumps(ads)})

    async def update_countdown(self, user_id: int, countdown: int) -> None:
        countdown = int(countdown)
        if countdown < MIN_COUNTDOWN or countdown > MAX_COUNTDOWN:
            raise ValueError(f"Countdown must be between {MIN_COUNTDOWN} and {MAX_COUNTDOWN} seconds")
        await self._update(user_id, {"countdown": countdown})

    async def add_short_link(self, user_id: int, original_url: str, short_code: Optional[str] = None) -> Dict[str, Any]:
        data = await self.get_or_create_user_data(user_id)
        row = await self.links.create_short_link(original_url, short_code, user_id=user_id)
        link = {
            "id": str(row["id"]),
            "originalUrl": row["original_url"],
            "shortCode": row["short_code"],
            "clickCount": 0,
            "createdAt": datetime.utcnow().isoformat(),
        }
        await self._update(user_id, {"short_links": json.dumps(data["short_links"] + [link])})
        return link

    async def delete_short_link(self, user_id: int, link_id: int) -> bool:
        """Drop the link row and its entry in the user's bundle together."""
        if not await self.links.delete_short_link(link_id, user_id=user_id):
            return False
        data = await self.get_user_data(user_id)
        if data:
            kept = [l for l in data["short_links"] if not (isinstance(l, dict) and str(l.get("id")) == str(link_id))]
            await self._update(user_id, {"short_links": json.dumps(kept)})
        return True

    async def update_analytics(self, user_id: int, analytics: Dict[str, Any]) -> None:
        await self._update(user_id, {"analytics": json.dumps(analytics)})

    async def delete_user_data(self, user_id: int) -> None:
        try:
            async with self.db.connect() as db:
                await db.execute("DELETE FROM users_data WHERE user_id=?", (user_id,))
                await db.execute("DELETE FROM short_links WHERE user_id=?", (user_id,))
                await db.commit()
        except Exception as e:
            logger.error(f"Error deleting user data: {e}")
            raise DataAccessError("Failed to delete user data") from e

    async def get_all_users_data(self) -> List[Dict[str, Any]]:
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                rows = await (await db.execute("SELECT * FROM users_data ORDER BY created_at DESC, id DESC")).fetchall()
        except Exception as e:
            logger.error(f"Error fetching all users data: {e}")
            raise DataAccessError("Failed to fetch users data") from e
        return [_transform_user_data(dict(r)) for r in rows]

    async def update_user_data_by_user_id(self, user_id: int, updates: Dict[str, Any]) -> None:
        fields: Dict[str, Any] = {}
        for k in ("ads", "short_links", "analytics"):
            if k in updates:
                fields[k] = json.dumps(updates[k])
        if "countdown" in updates:
            try:
                countdown = int(updates["countdown"])
            except (TypeError, ValueError):
                raise ValueError("Countdown must be a whole number of seconds")
            if countdown < MIN_COUNTDOWN or countdown > MAX_COUNTDOWN:
                raise ValueError(f"Countdown must be between {MIN_COUNTDOWN} and {MAX_COUNTDOWN} seconds")
            fields["countdown"] = countdown
        if not fields:
            return
        await self._update(user_id, fields)


class UserManagement:
    def __init__(self, db: Database):
        self.db = db

    async def list_users(self) -> List[Dict[str, Any]]:
        sql = (
            "SELECT u.id, u.username, u.email, u.created_at, COALESCE(r.role, 'user') AS role, "
            "(SELECT COUNT(*) FROM short_links s WHERE s.user_id=u.id) AS link_count "
            "FROM users u LEFT JOIN user_roles r ON r.user_id=u.id ORDER BY u.created_at DESC, u.id DESC"
        )
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                rows = await (await db.execute(sql)).fetchall()
        except Exception as e:
            logger.error(f"Error fetching users: {e}")
            raise DataAccessError("Failed to load users") from e
        return [dict(r) for r in rows]

    async def set_user_role(self, user_id: int, role: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}")
        try:
            async with self.db.connect() as db:
                await db.execute("DELETE FROM user_roles WHERE user_id=?", (user_id,))
                await db.execute("INSERT INTO user_roles (user_id, role) VALUES (?,?)", (user_id, role))
                await db.commit()
        except Exception as e:
            logger.error(f"Error updating role: {e}")
            raise DataAccessError("Failed to update user role") from e
        logger.info(f"User {user_id} role set to {role}")
