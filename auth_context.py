from typing import Optional

from pydantic import BaseModel

ROLES = ("admin", "developer", "user")

LOCAL_SCHEME = "local"
DELEGATED_SCHEME = "delegated"

# role -> roles it may act as when the scheme is hierarchical
_IMPLIED = {
    "admin": {"admin", "developer", "user"},
    "developer": {"developer", "user"},
    "user": {"user"},
}


def role_allows(user_role: Optional[str], requested: str, hierarchical: bool) -> bool:
    if not user_role:
        return False
    if not hierarchical:
        return user_role == requested
    return requested in _IMPLIED.get(user_role, {user_role})


class AuthContext(BaseModel):
    """What a request is allowed to do, whichever scheme authenticated it.

    The hardcoded-credential scheme compares roles exactly; the delegated
    scheme applies the admin > developer > user hierarchy.
    """

    scheme: str
    authenticated: bool = False
    principal: Optional[str] = None
    role: Optional[str] = None
    user_id: Optional[int] = None

    @property
    def hierarchical(self) -> bool:
        return self.scheme == DELEGATED_SCHEME

    def can(self, role: str) -> bool:
        return self.authenticated and role_allows(self.role, role, self.hierarchical)


def anonymous(scheme: str) -> AuthContext:
    return AuthContext(scheme=scheme)
