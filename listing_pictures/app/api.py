"""FastAPI application exposing listing and profile pictures."""

import logging
import secrets
from pathlib import Path
from typing import Any, List, Mapping, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from listing_pictures.config import settings
from listing_pictures.domain.errors import (
    AccessDenied,
    EntityNotFound,
    InvalidFilename,
    InvalidPath,
    PictureError,
    PictureLimitReached,
    PictureNotFound,
    StorageFailure,
    UploadError,
)
from listing_pictures.domain.models import (
    MAX_LISTING_PICTURES,
    MAX_USER_PICTURES,
    EntityKind,
    ReorderedPicturesResponse,
    ReorderRequest,
    SavedPicturesResponse,
    UpdatedPicturesResponse,
    User,
    UserPictureResponse,
    VerdictResponse,
)
from listing_pictures.security.images import evaluate_candidate
from listing_pictures.security.problem_details import problem_response
from listing_pictures.security.uploads import MAX_BYTES, UploadCandidate
from listing_pictures.services.auth_service import auth_service
from listing_pictures.services.picture_service import ListingPictureService, UserPictureService
from listing_pictures.services.picture_storage import PictureStorage
from listing_pictures.services.security_service import security_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Listing Pictures API", description="Validated picture storage for listings", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

security = HTTPBearer()

PICTURE_STORAGE_PATH = settings.picture_storage_path


def _storage_root() -> Path:
    return Path(PICTURE_STORAGE_PATH)


def _ensure_correlation_id(request: Request) -> str:
    """Return existing correlation id or generate a new one."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = secrets.token_urlsafe(16)
        request.state.correlation_id = correlation_id
    return correlation_id


def _problem_response(
    request: Request,
    *,
    status_code: int,
    title: str,
    detail: str,
    code: str,
    headers: Mapping[str, str] | None = None,
    extras: dict[str, Any] | None = None,
):
    """Produce a RFC 7807 response with a stable correlation id."""
    return problem_response(
        status=status_code,
        title=title,
        detail=detail,
        code=code,
        headers=headers,
        extras=extras,
        correlation_id=_ensure_correlation_id(request),
        instance=str(request.url.path),
    )


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    """Correlation id, rate limiting and security headers for every request."""
    correlation_id = _ensure_correlation_id(request)
    try:
        security_service.process_request(request)
    except HTTPException as exc:
        headers = security_service.get_security_headers()
        if exc.headers:
            headers.update(exc.headers)
        return _problem_response(
            request,
            status_code=exc.status_code,
            title="Too many requests",
            detail=exc.detail,
            code="rate_limit_exceeded",
            headers=headers,
        )

    response = await call_next(request)
    for header, value in security_service.get_security_headers().items():
        response.headers[header] = value
    response.headers.setdefault("X-Correlation-ID", correlation_id)
    return response


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> User:
    """Get current authenticated user."""
    user = auth_service.get_current_user(credentials.credentials)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return user


def get_listing_picture_service() -> ListingPictureService:
    storage = PictureStorage(
        _storage_root(),
        EntityKind.LISTINGS,
        settings.listing_url_prefix,
        MAX_LISTING_PICTURES,
    )
    return ListingPictureService(storage)


def get_user_picture_service() -> UserPictureService:
    storage = PictureStorage(
        _storage_root(),
        EntityKind.USERS,
        settings.user_url_prefix,
        MAX_USER_PICTURES,
    )
    return UserPictureService(storage)


async def _read_candidate(upload: UploadFile) -> UploadCandidate:
    # One byte over the limit is enough to reject without buffering the rest.
    raw = await upload.read(MAX_BYTES + 1)
    await upload.close()
    return UploadCandidate(data=raw, filename=upload.filename or "", content_type=upload.content_type or "")


async def _read_candidates(files: Optional[List[UploadFile]]) -> List[UploadCandidate]:
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files uploaded.")
    if len(files) > MAX_LISTING_PICTURES:
        logger.warning("Ignoring %s file(s) beyond the per-request limit", len(files) - MAX_LISTING_PICTURES)
        for extra in files[MAX_LISTING_PICTURES:]:
            await extra.close()
    return [await _read_candidate(upload) for upload in files[:MAX_LISTING_PICTURES]]


# Exception handlers
@app.exception_handler(PictureError)
async def picture_error_handler(request: Request, exc: PictureError):
    """Map domain errors to problem details."""
    title = "Picture request failed"
    detail = exc.message
    if isinstance(exc, UploadError):
        title = "Invalid upload"
    elif isinstance(exc, (EntityNotFound, PictureNotFound)):
        title = "Resource not found"
    elif isinstance(exc, (InvalidFilename, InvalidPath)):
        title = "Invalid picture path"
        security_service.audit_logger.log_security_event(
            "PATH_TRAVERSAL_ATTEMPT",
            {"code": exc.code, "detail": exc.message},
            request,
        )
    elif isinstance(exc, AccessDenied):
        title = "Access denied"
    elif isinstance(exc, PictureLimitReached):
        title = "Picture limit reached"
    elif isinstance(exc, StorageFailure):
        title = "Storage failure"
        detail = "Pictures could not be stored"

    if exc.status >= 500:
        logger.error("Picture error %s on %s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.warning("Picture error %s on %s: %s", exc.code, request.url.path, exc.message)
    return _problem_response(request, status_code=exc.status, title=title, detail=detail, code=exc.code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation failed on %s", request.url.path)
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return _problem_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        title="Invalid request",
        detail="Request failed validation",
        code="validation_error",
        extras={"errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Normalize HTTP exceptions to RFC 7807."""
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    status_code = exc.status_code
    title = "HTTP error"
    code = "http_error"

    if status_code == status.HTTP_401_UNAUTHORIZED:
        title = "Authentication required"
        code = "not_authenticated"
    elif status_code == status.HTTP_403_FORBIDDEN:
        title = "Access denied"
        code = "access_denied"
    elif status_code == status.HTTP_404_NOT_FOUND:
        title = "Resource not found"
        code = "not_found"
    elif status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        title = "Method not allowed"
        code = "method_not_allowed"

    logger.warning("HTTPException (%s): %s", status_code, detail)
    return _problem_response(
        request,
        status_code=status_code,
        title=title,
        detail=detail,
        code=code,
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return _problem_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        title="Internal server error",
        detail="Internal server error",
        code="internal_error",
    )


# Picture endpoints
@app.post("/api/pictures/validate", response_model=List[VerdictResponse])
async def validate_pictures(
    files: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
):
    """Run the upload pipeline without storing anything."""
    candidates = await _read_candidates(files)
    verdicts = []
    for candidate in candidates:
        verdict = evaluate_candidate(candidate)
        if verdict.accepted:
            verdicts.append(
                VerdictResponse(
                    filename=verdict.filename,
                    accepted=True,
                    extension=verdict.image.extension,
                    width=verdict.image.width,
                    height=verdict.image.height,
                )
            )
        else:
            verdicts.append(
                VerdictResponse(
                    filename=verdict.filename,
                    accepted=False,
                    code=verdict.error.code,
                    detail=verdict.error.message,
                )
            )
    logger.info("Validated %s file(s) for user %s", len(verdicts), current_user.id)
    return verdicts


@app.post(
    "/api/pictures/{listing_id}",
    response_model=SavedPicturesResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_listing_pictures(
    listing_id: int,
    files: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Append pictures to a listing."""
    candidates = await _read_candidates(files)
    saved = service.add(listing_id, current_user, candidates)
    logger.info("User %s added %s picture(s) to listing %s", current_user.id, len(saved), listing_id)
    return SavedPicturesResponse(saved=saved)


@app.put("/api/pictures/{listing_id}", response_model=UpdatedPicturesResponse)
async def update_listing_pictures(
    listing_id: int,
    files: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Replace every picture of a listing."""
    candidates = await _read_candidates(files)
    updated = service.replace(listing_id, current_user, candidates)
    return UpdatedPicturesResponse(updated=updated)


@app.get("/api/pictures/{listing_id}", response_model=List[str])
async def get_listing_picture_urls(
    listing_id: int,
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Public urls of a listing's pictures in display order."""
    return service.list_urls(listing_id)


@app.put("/api/pictures/{listing_id}/order", response_model=ReorderedPicturesResponse)
async def reorder_listing_pictures(
    listing_id: int,
    order: ReorderRequest,
    current_user: User = Depends(get_current_user),
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Persist a new display order for a listing's pictures."""
    ordered = service.reorder(listing_id, current_user, order.filenames)
    return ReorderedPicturesResponse(ordered=ordered)


@app.delete("/api/pictures/{listing_id}/{filename:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing_picture(
    listing_id: int,
    filename: str,
    current_user: User = Depends(get_current_user),
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Delete one picture of a listing."""
    service.delete(listing_id, current_user, filename)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/api/listings/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: int,
    current_user: User = Depends(get_current_user),
    service: ListingPictureService = Depends(get_listing_picture_service),
):
    """Delete a listing and its whole picture directory."""
    service.delete_listing(listing_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/api/users/{user_id}/picture", response_model=UserPictureResponse)
async def upload_profile_picture(
    user_id: str,
    file: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    service: UserPictureService = Depends(get_user_picture_service),
):
    """Replace a user's profile picture."""
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    candidate = await _read_candidate(file)
    url = service.upload(user_id, current_user, candidate)
    return UserPictureResponse(picture_url=url)


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
