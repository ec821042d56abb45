# tests/conftest.py
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]  # repository root
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from listing_pictures.adapters.database import db  # noqa: E402
from listing_pictures.services.auth_service import auth_service  # noqa: E402
from listing_pictures.services.security_service import security_service  # noqa: E402


def encode_image(fmt="JPEG", size=(64, 48), mode="RGB", color=(200, 30, 30), **save_kwargs) -> bytes:
    """Encode a solid-colour image in memory."""
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture()
def make_image():
    return encode_image


@pytest.fixture(autouse=True)
def reset_state():
    """Keep in-memory state from leaking across tests."""
    db.reset()
    auth_service.reset()
    security_service.audit_logger.logs.clear()
    security_service.rate_limiter.windows.clear()
    yield
    db.reset()
    auth_service.reset()
    security_service.audit_logger.logs.clear()
    security_service.rate_limiter.windows.clear()
