"""
Bearer token resolution for the picture service.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from listing_pictures.adapters.database import db
from listing_pictures.domain.models import User


class AuthService:
    """Issues opaque tokens and maps them back to users."""

    def __init__(self):
        self.active_tokens: dict[str, dict] = {}  # token -> {user_id, expires_at}
        self.token_expiry_hours = 12

    def reset(self) -> None:
        self.active_tokens.clear()

    def issue_token(self, user_id: str) -> str:
        """Generate an authentication token for an existing user."""
        if not db.get_user_by_id(user_id):
            raise ValueError("Unknown user")
        token = secrets.token_urlsafe(32)
        expires_at = datetime.utcnow() + timedelta(hours=self.token_expiry_hours)
        self.active_tokens[token] = {"user_id": user_id, "expires_at": expires_at}
        return token

    def revoke_token(self, token: str) -> bool:
        return self.active_tokens.pop(token, None) is not None

    def get_current_user(self, token: str) -> Optional[User]:
        """Get current user from token."""
        token_data = self.active_tokens.get(token)
        if not token_data:
            return None

        if datetime.utcnow() > token_data["expires_at"]:
            del self.active_tokens[token]
            return None

        return db.get_user_by_id(token_data["user_id"])


# Global auth service instance
auth_service = AuthService()
