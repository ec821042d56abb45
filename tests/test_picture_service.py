import os

import pytest

import listing_pictures.services.picture_storage as storage_module
from listing_pictures.adapters.database import db
from listing_pictures.domain.errors import InvalidSignature, StorageFailure
from listing_pictures.domain.models import MAX_LISTING_PICTURES, EntityKind
from listing_pictures.security.uploads import UploadCandidate
from listing_pictures.services.picture_service import ListingPictureService, UserPictureService
from listing_pictures.services.picture_storage import PictureStorage

PREFIX = "/assets/img/listings"


@pytest.fixture()
def owner():
    return db.create_user("owner-1", "owner")


@pytest.fixture()
def listing(owner):
    return db.create_listing(owner.id, "Sunny flat")


@pytest.fixture()
def service(tmp_path):
    return ListingPictureService(PictureStorage(tmp_path, EntityKind.LISTINGS, PREFIX, MAX_LISTING_PICTURES))


@pytest.fixture()
def jpeg(make_image):
    def build(name="photo.jpg"):
        return UploadCandidate(make_image("JPEG"), name, "image/jpeg")

    return build


def _fail_on_call(monkeypatch, failing_call):
    real_replace = os.replace
    calls = {"count": 0}

    def flaky_replace(src, dst):
        calls["count"] += 1
        if calls["count"] == failing_call:
            raise OSError("simulated disk failure")
        return real_replace(src, dst)

    monkeypatch.setattr(storage_module.os, "replace", flaky_replace)


def test_failed_replace_refreshes_slots_and_approval(service, owner, listing, jpeg, monkeypatch):
    service.add(listing.id, owner, [jpeg(), jpeg()])
    listing.approved = True
    _fail_on_call(monkeypatch, 2)

    with pytest.raises(StorageFailure):
        service.replace(listing.id, owner, [jpeg(), jpeg()])

    assert service.list_urls(listing.id) == [f"{PREFIX}/{listing.id}/Picture1.jpg"]
    assert listing.pictures.slots[:2] == [f"{PREFIX}/{listing.id}/Picture1.jpg", None]
    assert listing.approved is False


def test_failed_add_keeps_earlier_files_in_slots(service, owner, listing, jpeg, monkeypatch):
    listing.approved = True
    _fail_on_call(monkeypatch, 2)

    with pytest.raises(StorageFailure):
        service.add(listing.id, owner, [jpeg(), jpeg(), jpeg()])

    assert listing.pictures.slots[:2] == [f"{PREFIX}/{listing.id}/Picture1.jpg", None]
    assert listing.approved is False


def test_rejected_upload_keeps_approval(service, owner, listing, jpeg):
    service.add(listing.id, owner, [jpeg()])
    listing.approved = True
    zip_bytes = b"PK\x03\x04\x14\x00\x00\x00\x08\x00" + b"\x00" * 64

    with pytest.raises(InvalidSignature):
        service.replace(listing.id, owner, [UploadCandidate(zip_bytes, "virus.jpg", "image/jpeg")])

    assert listing.approved is True
    assert listing.pictures.slots[0] == f"{PREFIX}/{listing.id}/Picture1.jpg"


def test_reorder_keeps_approval_and_refreshes_slots(service, owner, listing, jpeg):
    service.add(listing.id, owner, [jpeg(), jpeg()])
    listing.approved = True

    service.reorder(listing.id, owner, ["Picture2.jpg", "Picture1.jpg"])

    assert listing.approved is True
    assert listing.pictures.slots[:2] == [
        f"{PREFIX}/{listing.id}/001_Picture2.jpg",
        f"{PREFIX}/{listing.id}/002_Picture1.jpg",
    ]


def test_failed_avatar_replace_clears_stale_url(tmp_path, owner, jpeg, monkeypatch):
    avatars = UserPictureService(PictureStorage(tmp_path, EntityKind.USERS, "/assets/img/users", 1))
    avatars.upload(owner.id, owner, jpeg())
    assert owner.picture_url == "/assets/img/users/owner-1/Picture1.jpg"
    _fail_on_call(monkeypatch, 1)

    with pytest.raises(StorageFailure):
        avatars.upload(owner.id, owner, jpeg())

    assert owner.picture_url is None
