"""
Domain models for the picture service.
"""

import enum
from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_LISTING_PICTURES = 10
MAX_USER_PICTURES = 1


class EntityKind(str, enum.Enum):
    """Owners of a picture directory."""

    LISTINGS = "listings"
    USERS = "users"


class UserRole(str, enum.Enum):
    """User roles."""

    USER = "user"
    ADMIN = "admin"


class PictureSlots(BaseModel):
    """Fixed number of ordered picture slots, indexed by position."""

    slots: List[Optional[str]] = Field(default_factory=lambda: [None] * MAX_LISTING_PICTURES)

    @field_validator("slots")
    @classmethod
    def validate_slot_count(cls, v):
        if len(v) != MAX_LISTING_PICTURES:
            raise ValueError(f"Expected exactly {MAX_LISTING_PICTURES} picture slots")
        return v

    def assign(self, urls: Iterable[str]) -> None:
        """Fill slots in order; extra urls beyond the slot count are ignored."""
        values = list(urls)[:MAX_LISTING_PICTURES]
        self.slots = values + [None] * (MAX_LISTING_PICTURES - len(values))


class User(BaseModel):
    """User record as seen by the picture service."""

    id: str = Field(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_-]+$")
    username: str = Field(..., min_length=1, max_length=50)
    role: UserRole = UserRole.USER
    picture_url: Optional[str] = None
    is_active: bool = True


class Listing(BaseModel):
    """Listing record; only the fields the picture flow touches."""

    id: int = Field(..., gt=0)
    owner_id: str
    title: str = Field(..., min_length=1, max_length=200)
    approved: bool = False
    pictures: PictureSlots = Field(default_factory=PictureSlots)
    created_at: datetime
    updated_at: datetime


class ReorderRequest(BaseModel):
    """Desired display order of stored picture filenames."""

    filenames: List[str] = Field(..., min_length=1, max_length=MAX_LISTING_PICTURES)


class SavedPicturesResponse(BaseModel):
    saved: List[str]


class UpdatedPicturesResponse(BaseModel):
    updated: List[str]


class ReorderedPicturesResponse(BaseModel):
    ordered: List[str]


class UserPictureResponse(BaseModel):
    picture_url: str


class VerdictResponse(BaseModel):
    """Per-file result of a dry-run validation."""

    filename: str
    accepted: bool
    extension: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    code: Optional[str] = None
    detail: Optional[str] = None
