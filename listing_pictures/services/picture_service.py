"""
Picture workflows for listings and user avatars.

These services own the checks the storage layer assumes were already made:
entity existence and ownership. They also keep the listing record in step
with what is on disk.
"""

import logging
from datetime import datetime
from typing import List, Sequence

from listing_pictures.adapters.database import db
from listing_pictures.domain.errors import AccessDenied, EntityNotFound, StorageFailure
from listing_pictures.domain.models import Listing, User, UserRole
from listing_pictures.security.uploads import UploadCandidate
from listing_pictures.services.picture_storage import PictureStorage

logger = logging.getLogger(__name__)


def _ensure_owner(owner_id: str, user: User) -> None:
    if user.id != owner_id and user.role != UserRole.ADMIN:
        logger.warning("User %s denied access to pictures owned by %s", user.id, owner_id)
        raise AccessDenied("You do not own this resource")


class ListingPictureService:
    """Listing picture operations with existence, ownership and approval rules."""

    def __init__(self, storage: PictureStorage):
        self.storage = storage

    def _get_listing(self, listing_id: int) -> Listing:
        listing = db.get_listing_by_id(listing_id)
        if not listing:
            raise EntityNotFound("Listing not found")
        return listing

    def _sync(self, listing: Listing, *, requires_review: bool) -> None:
        """Mirror the directory into the listing's slots."""
        listing.pictures.assign(self.storage.list_picture_urls(listing.id))
        if requires_review and listing.approved:
            logger.info("Listing %s sent back for review after picture change", listing.id)
        if requires_review:
            listing.approved = False
        listing.updated_at = datetime.utcnow()

    def add(self, listing_id: int, user: User, candidates: Sequence[UploadCandidate]) -> List[str]:
        listing = self._get_listing(listing_id)
        _ensure_owner(listing.owner_id, user)
        try:
            saved = self.storage.add_pictures(listing_id, candidates)
        except StorageFailure:
            # Files written before the failure stay on disk.
            self._sync(listing, requires_review=True)
            raise
        self._sync(listing, requires_review=bool(saved))
        return saved

    def replace(self, listing_id: int, user: User, candidates: Sequence[UploadCandidate]) -> List[str]:
        listing = self._get_listing(listing_id)
        _ensure_owner(listing.owner_id, user)
        try:
            saved = self.storage.replace_pictures(listing_id, candidates)
        except StorageFailure:
            self._sync(listing, requires_review=True)
            raise
        self._sync(listing, requires_review=True)
        return saved

    def delete(self, listing_id: int, user: User, filename: str) -> None:
        listing = self._get_listing(listing_id)
        _ensure_owner(listing.owner_id, user)
        try:
            self.storage.delete_picture(listing_id, filename)
        except StorageFailure:
            self._sync(listing, requires_review=True)
            raise
        self._sync(listing, requires_review=True)

    def reorder(self, listing_id: int, user: User, filenames: Sequence[str]) -> List[str]:
        listing = self._get_listing(listing_id)
        _ensure_owner(listing.owner_id, user)
        try:
            ordered = self.storage.reorder_pictures(listing_id, filenames)
        except StorageFailure:
            self._sync(listing, requires_review=False)
            raise
        self._sync(listing, requires_review=False)
        return ordered

    def list_urls(self, listing_id: int) -> List[str]:
        self._get_listing(listing_id)
        return self.storage.list_picture_urls(listing_id)

    def delete_listing(self, listing_id: int, user: User) -> None:
        """Remove the listing record together with its picture set."""
        listing = self._get_listing(listing_id)
        _ensure_owner(listing.owner_id, user)
        self.storage.delete_all(listing_id)
        db.delete_listing(listing_id)
        logger.info("Listing %s deleted by %s", listing_id, user.id)


class UserPictureService:
    """Single-picture avatar storage for users."""

    def __init__(self, storage: PictureStorage):
        self.storage = storage

    def upload(self, user_id: str, current_user: User, candidate: UploadCandidate) -> str:
        user = db.get_user_by_id(user_id)
        if not user:
            raise EntityNotFound("User not found")
        _ensure_owner(user.id, current_user)

        try:
            saved = self.storage.replace_pictures(user_id, [candidate])
        except StorageFailure:
            # The previous picture is already gone; point at whatever is left.
            remaining = self.storage.list_picture_urls(user_id)
            user.picture_url = remaining[0] if remaining else None
            raise
        url = f"{self.storage.url_prefix}/{user_id}/{saved[0]}"
        user.picture_url = url
        logger.info("Profile picture updated for user %s", user_id)
        return url
