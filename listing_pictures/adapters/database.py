"""
Database adapters for the picture service.
In-memory storage standing in for the listings/users tables.
"""

from datetime import datetime
from typing import Dict, Optional

from listing_pictures.domain.models import Listing, User, UserRole


class Database:
    """In-memory database of listings and users."""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.listings: Dict[int, Listing] = {}
        self.next_listing_id = 1

    def reset(self) -> None:
        """Clear stored state (useful for tests)."""
        self.users.clear()
        self.listings.clear()
        self.next_listing_id = 1

    def create_user(self, user_id: str, username: str, role: UserRole = UserRole.USER) -> User:
        """Create a new user."""
        if user_id in self.users:
            raise ValueError("User already exists")
        user = User(id=user_id, username=username, role=role)
        self.users[user_id] = user
        return user

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get an active user by ID."""
        user = self.users.get(user_id)
        if user and user.is_active:
            return user
        return None

    def create_listing(self, owner_id: str, title: str) -> Listing:
        """Create a new listing awaiting approval."""
        listing_id = self.next_listing_id
        self.next_listing_id += 1
        now = datetime.utcnow()
        listing = Listing(
            id=listing_id,
            owner_id=owner_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        self.listings[listing_id] = listing
        return listing

    def get_listing_by_id(self, listing_id: int) -> Optional[Listing]:
        """Get listing by ID."""
        return self.listings.get(listing_id)

    def delete_listing(self, listing_id: int) -> bool:
        """Remove a listing record."""
        return self.listings.pop(listing_id, None) is not None


db = Database()
