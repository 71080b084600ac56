"""Session identity resolution.

Authentication itself (sign-in, tokens) belongs to the managed backend; the
core only needs to know who the current user is, if anyone.
"""

from dataclasses import dataclass
from typing import Optional

from crowdfund.errors import Unauthenticated


@dataclass(frozen=True)
class Identity:
    """Authenticated user for the current session."""

    user_id: str


class SessionProvider:
    """Resolves the identity of the current session."""

    def current(self) -> Optional[Identity]:
        """Return the current identity, or None when signed out."""
        raise NotImplementedError

    def require(self) -> Identity:
        """Return the current identity.

        Raises:
            Unauthenticated: If no session is present
        """
        identity = self.current()
        if identity is None:
            raise Unauthenticated("Not authenticated")
        return identity


class StaticSessionProvider(SessionProvider):
    """Session provider holding a fixed identity (CLI, tests)."""

    def __init__(self, user_id: Optional[str] = None):
        self._identity = Identity(user_id) if user_id else None

    def current(self) -> Optional[Identity]:
        return self._identity

    def sign_in(self, user_id: str) -> None:
        self._identity = Identity(user_id)

    def sign_out(self) -> None:
        self._identity = None
