"""Caller identity for permission decisions."""

from dataclasses import dataclass


@dataclass(frozen=True)
class UserContext:
    """Verified caller supplied by the authentication layer.

    Never persisted by the access layer.
    """

    user_id: str
    role: str
    email: str = ""

    def validate(self) -> bool:
        """Check that the context has the required fields."""
        return bool(self.user_id and self.user_id.strip() and self.role)
