"""
Filesystem-backed picture sets.

Each entity owns one directory under `{base}/{kind}/{entity_id}`. The
directory listing is the source of truth for which pictures exist, and the
filenames encode display order.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
import uuid
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from listing_pictures.domain.errors import (
    InvalidFilename,
    InvalidPath,
    PictureLimitReached,
    PictureNotFound,
    StorageFailure,
)
from listing_pictures.domain.models import EntityKind
from listing_pictures.security.images import SanitizedImage, process_candidate
from listing_pictures.security.uploads import UploadCandidate, validate_basics

logger = logging.getLogger(__name__)

PICTURE_NAME_RE = re.compile(r"^Picture(\d+)\.[A-Za-z0-9]+$")
ORDER_PREFIX_RE = re.compile(r"^\d{3}_")
ENTITY_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
SCRATCH_SUFFIX = "_temp"

_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(key: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


def check_filename(filename: str) -> str:
    """Reject anything that is not a bare, visible file name."""
    if not filename or filename in {".", ".."}:
        raise InvalidFilename("Filename must not be empty")
    if "/" in filename or "\\" in filename or "\x00" in filename:
        raise InvalidFilename("Filename must not contain path separators")
    if ".." in filename:
        raise InvalidFilename("Filename must not contain '..'")
    if filename.startswith("."):
        raise InvalidFilename("Hidden files cannot be addressed")
    return filename


class PictureStorage:
    """Stores validated pictures for one kind of entity."""

    def __init__(
        self,
        base_dir: str | os.PathLike[str],
        kind: EntityKind,
        url_prefix: str,
        max_pictures: int,
    ):
        self.base_dir = Path(base_dir)
        self.kind = kind
        self.url_prefix = url_prefix.rstrip("/")
        self.max_pictures = max_pictures

    # -- paths -----------------------------------------------------------

    def _kind_root(self) -> Path:
        root = self.base_dir.expanduser() / self.kind.value
        # Reject a swapped-in kind directory before resolving it away.
        if root.is_symlink():
            raise InvalidPath("Picture directory must not be a symlink")
        return root.resolve()

    def entity_dir(self, entity_id: int | str) -> Path:
        """Directory for `entity_id`, guaranteed to sit directly under the kind root."""
        key = str(entity_id)
        if not ENTITY_ID_RE.match(key):
            logger.warning("Rejected entity id %r for %s", key, self.kind.value)
            raise InvalidPath("Invalid entity identifier")
        root = self._kind_root()
        directory = (root / key).resolve()
        if directory.parent != root:
            logger.warning("Entity directory %s escapes %s", directory, root)
            raise InvalidPath("Invalid storage path detected")
        return directory

    def scratch_dir(self, entity_id: int | str) -> Path:
        directory = self.entity_dir(entity_id)
        return directory.with_name(directory.name + SCRATCH_SUFFIX)

    def _checked_name(self, entity_id: int | str, filename: str) -> str:
        try:
            return check_filename(filename)
        except InvalidFilename:
            logger.warning(
                "Rejected filename %r for %s/%s: possible traversal attempt",
                filename,
                self.kind.value,
                entity_id,
            )
            raise

    def safe_join(self, directory: Path, filename: str) -> Path:
        self._checked_name(directory.name, filename)
        path = (directory / filename).resolve()
        if path.parent != directory:
            logger.warning("Resolved path %s escapes %s: possible traversal attempt", path, directory)
            raise InvalidPath("Invalid storage path detected")
        return path

    @contextmanager
    def _locked(self, directory: Path) -> Iterator[None]:
        with _lock_for(str(directory)):
            yield

    # -- helpers ---------------------------------------------------------

    @staticmethod
    def _existing_files(directory: Path) -> list[str]:
        if not directory.is_dir():
            return []
        with os.scandir(directory) as entries:
            return [
                entry.name
                for entry in entries
                if entry.name and not entry.name.startswith(".") and entry.is_file()
            ]

    @staticmethod
    def next_index(filenames: Sequence[str]) -> int:
        indices = [int(m.group(1)) for m in map(PICTURE_NAME_RE.match, filenames) if m]
        return max(indices, default=0) + 1

    @staticmethod
    def _write_atomic(directory: Path, filename: str, data: bytes) -> None:
        target = directory / filename
        partial = directory / f".{filename}.{uuid.uuid4().hex}.part"
        try:
            partial.write_bytes(data)
            os.replace(partial, target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            logger.error("Failed to write %s: %s", target, exc)
            raise StorageFailure("Failed to store picture") from exc

    def _prepare(self, candidates: Sequence[UploadCandidate], free: int) -> list[SanitizedImage]:
        accepted = list(candidates[:free])
        if len(candidates) > free:
            logger.warning(
                "Dropping %s picture(s) above the limit of %s",
                len(candidates) - free,
                self.max_pictures,
            )
        return [process_candidate(candidate) for candidate in accepted]

    def _write_all(self, directory: Path, images: Sequence[SanitizedImage], start: int) -> list[str]:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFailure("Failed to create picture directory") from exc
        saved: list[str] = []
        for idx, image in enumerate(images, start=start):
            filename = f"Picture{idx}{image.extension}"
            self._write_atomic(directory, filename, image.data)
            saved.append(filename)
        return saved

    def _remove_tree(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.error("Failed to remove %s: %s", path, exc)
            raise StorageFailure("Failed to delete pictures") from exc

    # -- operations ------------------------------------------------------

    def add_pictures(self, entity_id: int | str, candidates: Sequence[UploadCandidate]) -> list[str]:
        """
        Validate, sanitize and append pictures after the highest `PictureN`.

        Every candidate is sanitized before the first write, so a rejected
        candidate leaves the directory untouched. Candidates beyond the free
        slots pass the metadata checks but are ignored without being decoded.
        """
        if not candidates:
            return []
        for candidate in candidates:
            validate_basics(candidate)
        directory = self.entity_dir(entity_id)
        with self._locked(directory):
            existing = self._existing_files(directory)
            free = self.max_pictures - len(existing)
            if free <= 0:
                raise PictureLimitReached(f"At most {self.max_pictures} pictures are allowed")
            images = self._prepare(candidates, free)
            saved = self._write_all(directory, images, self.next_index(existing))
        logger.info("Stored %s picture(s) for %s/%s", len(saved), self.kind.value, entity_id)
        return saved

    def replace_pictures(self, entity_id: int | str, candidates: Sequence[UploadCandidate]) -> list[str]:
        """Swap the whole picture set for `candidates`, numbering from 1."""
        for candidate in candidates:
            validate_basics(candidate)
        directory = self.entity_dir(entity_id)
        with self._locked(directory):
            images = self._prepare(candidates, self.max_pictures)
            self._remove_tree(directory)
            saved = self._write_all(directory, images, 1)
        logger.info("Replaced pictures for %s/%s with %s file(s)", self.kind.value, entity_id, len(saved))
        return saved

    def delete_picture(self, entity_id: int | str, filename: str) -> None:
        self._checked_name(entity_id, filename)
        directory = self.entity_dir(entity_id)
        path = self.safe_join(directory, filename)
        with self._locked(directory):
            if not path.is_file():
                raise PictureNotFound(f"Picture {filename} not found")
            try:
                path.unlink()
            except OSError as exc:
                logger.error("Failed to delete %s: %s", path, exc)
                raise StorageFailure("Failed to delete picture") from exc
        logger.info("Deleted %s for %s/%s", filename, self.kind.value, entity_id)

    def reorder_pictures(self, entity_id: int | str, ordered_filenames: Sequence[str]) -> list[str]:
        """
        Rename pictures to `{NNN}_{name}` following `ordered_filenames`.

        Files are staged through a scratch directory next to the entity
        directory. Restoration after a failure is best-effort only: a crash
        between the two phases leaves staged files in the scratch directory,
        which the next reorder moves back before starting.
        """
        for name in ordered_filenames:
            self._checked_name(entity_id, name)
        directory = self.entity_dir(entity_id)
        paths = [self.safe_join(directory, name) for name in ordered_filenames]
        if len(set(ordered_filenames)) != len(ordered_filenames):
            raise InvalidFilename("Each picture may appear only once in the new order")

        with self._locked(directory):
            scratch = self.scratch_dir(entity_id)
            if scratch.exists():
                self._recover_scratch(scratch, directory)

            existing = set(self._existing_files(directory))
            missing = [name for name in ordered_filenames if name not in existing]
            if missing:
                raise PictureNotFound(f"Picture {missing[0]} not found")

            plan = [
                (path, f"{position:03d}_{ORDER_PREFIX_RE.sub('', path.name, count=1)}")
                for position, path in enumerate(paths, start=1)
            ]
            untouched = existing - set(ordered_filenames)
            clashes = [staged for _, staged in plan if staged in untouched]
            if clashes:
                raise InvalidFilename(f"Reordering would overwrite {clashes[0]}")

            try:
                scratch.mkdir()
            except OSError as exc:
                raise StorageFailure("Failed to prepare reorder") from exc

            staged: list[tuple[Path, str]] = []
            try:
                for path, staged_name in plan:
                    os.replace(path, scratch / staged_name)
                    staged.append((path, staged_name))
            except OSError as exc:
                logger.error("Reorder staging failed for %s: %s", directory, exc)
                self._restore_staged(staged, scratch)
                raise StorageFailure("Failed to reorder pictures") from exc

            try:
                for _, staged_name in staged:
                    os.replace(scratch / staged_name, directory / staged_name)
                scratch.rmdir()
            except OSError as exc:
                logger.error("Reorder of %s left files in %s: %s", directory, scratch, exc)
                raise StorageFailure("Failed to reorder pictures") from exc

        ordered = [staged_name for _, staged_name in staged]
        logger.info("Reordered %s picture(s) for %s/%s", len(ordered), self.kind.value, entity_id)
        return ordered

    def _restore_staged(self, staged: Sequence[tuple[Path, str]], scratch: Path) -> None:
        for original, staged_name in reversed(staged):
            try:
                os.replace(scratch / staged_name, original)
            except OSError as exc:
                logger.error("Could not restore %s from %s: %s", original.name, scratch, exc)
        try:
            scratch.rmdir()
        except OSError as exc:
            logger.error("Scratch directory %s left behind: %s", scratch, exc)

    def _recover_scratch(self, scratch: Path, directory: Path) -> None:
        logger.warning("Found leftover scratch directory %s, moving files back", scratch)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            for name in self._existing_files(scratch):
                target = directory / name
                if target.exists():
                    logger.error("Leftover %s clashes with an existing picture, keeping it in %s", name, scratch)
                    continue
                os.replace(scratch / name, target)
            scratch.rmdir()
        except OSError as exc:
            raise StorageFailure("Leftover reorder files need manual cleanup") from exc

    def list_picture_urls(self, entity_id: int | str) -> list[str]:
        """
        Public urls in plain string order of their filenames.

        The order is lexicographic, not numeric: `Picture10.jpg` sorts before
        `Picture2.jpg`.
        """
        directory = self.entity_dir(entity_id)
        with self._locked(directory):
            names = sorted(self._existing_files(directory))
        return [f"{self.url_prefix}/{entity_id}/{name}" for name in names]

    def delete_all(self, entity_id: int | str) -> None:
        directory = self.entity_dir(entity_id)
        with self._locked(directory):
            self._remove_tree(directory)
            self._remove_tree(directory.with_name(directory.name + SCRATCH_SUFFIX))
        logger.info("Removed all pictures for %s/%s", self.kind.value, entity_id)
