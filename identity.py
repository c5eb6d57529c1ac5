import re
import asyncio
import logging
from typing import Optional, Dict, Any, Tuple

import aiosqlite
from itsdangerous import TimestampSigner, BadSignature
from passlib.context import CryptContext

from auth_context import AuthContext, DELEGATED_SCHEME, ROLES, anonymous, role_allows
from storage import Database
import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
signer = TimestampSigner(settings.SECRET_KEY, salt="user-session")

PENDING = "pending"
GRANTED = "granted"
DENIED = "denied"

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class IdentityError(Exception):
    pass


def has_role(user_role: Optional[str], role: str) -> bool:
    return role_allows(user_role, role, hierarchical=True)


class IdentityService:
    """End-user accounts, sessions and role assignments."""

    def __init__(self, db: Database):
        self.db = db

    async def sign_up(self, email: str, password: str, username: Optional[str] = None) -> Dict[str, Any]:
        email = str(email or "").strip().lower()
        password = str(password or "")
        if not EMAIL_RE.match(email):
            raise IdentityError("Invalid email")
        if len(password) < 6:
            raise IdentityError("Password too short")
        username = str(username or "").strip() or email.split("@")[0]
        async with self.db.connect() as db:
            if await (await db.execute("SELECT 1 FROM users WHERE email=?", (email,))).fetchone():
                raise IdentityError("User already registered")
            try:
                cur = await db.execute(
                    "INSERT INTO users (email, username, password_hash) VALUES (?,?,?)",
                    (email, username, pwd_context.hash(password)),
                )
            except aiosqlite.IntegrityError:
                # a concurrent sign-up took the email between the check and the insert
                raise IdentityError("User already registered")
            user_id = cur.lastrowid
            await db.execute("INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, 'user')", (user_id,))
            await db.commit()
        logger.info(f"Signed up user id={user_id}")
        return {"id": user_id, "email": email, "username": username}

    async def sign_in(self, email: str, password: str) -> Optional[str]:
        email = str(email or "").strip().lower()
        async with self.db.connect() as db:
            db.row_factory = aiosqlite.Row
            u = await (await db.execute("SELECT id, password_hash FROM users WHERE email=?", (email,))).fetchone()
        if not u or not pwd_context.verify(str(password or ""), u["password_hash"]):
            return None
        return signer.sign(str(u["id"])).decode()

    async def get_session_user(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        try:
            uid = int(signer.unsign(token, max_age=86400 * settings.USER_SESSION_DAYS).decode())
        except (BadSignature, ValueError):
            return None
        try:
            async with self.db.connect() as db:
                db.row_factory = aiosqlite.Row
                u = await (
                    await db.execute("SELECT id, email, username, created_at FROM users WHERE id=?", (uid,))
                ).fetchone()
        except Exception as e:
            logger.error(f"Session lookup error: {e}")
            return None
        return dict(u) if u else None

    async def fetch_user_role(self, user_id: int) -> str:
        try:
            async with self.db.connect() as db:
                row = await (await db.execute("SELECT role FROM user_roles WHERE user_id=?", (user_id,))).fetchone()
        except Exception as e:
            logger.error(f"Error fetching user role: {e}")
            return "user"
        role = str(row[0]) if row and row[0] else "user"
        return role if role in ROLES else "user"

    async def context(self, token: Optional[str]) -> AuthContext:
        user = await self.get_session_user(token)
        if not user:
            return anonymous(DELEGATED_SCHEME)
        return AuthContext(
            scheme=DELEGATED_SCHEME,
            authenticated=True,
            principal=user.get("email"),
            role=await self.fetch_user_role(int(user["id"])),
            user_id=int(user["id"]),
        )

    async def check(self, token: Optional[str], role: str, timeout: Optional[float] = None) -> Tuple[str, AuthContext]:
        """Resolve the session and decide access. Until the session resolves the
        decision is PENDING: neither granted nor denied."""
        timeout = settings.AUTH_RESOLVE_TIMEOUT if timeout is None else timeout
        try:
            ctx = await asyncio.wait_for(self.context(token), timeout)
        except asyncio.TimeoutError:
            logger.info("Session resolution still pending")
            return PENDING, anonymous(DELEGATED_SCHEME)
        if not ctx.authenticated or not has_role(ctx.role, role):
            return DENIED, ctx
        return GRANTED, ctx
