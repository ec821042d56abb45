import pytest

import listing_pictures.security.images as images_module
from listing_pictures.domain.errors import (
    EmptyFile,
    ExtensionNotAllowed,
    FileTooLarge,
    MimeTypeNotAllowed,
)
from listing_pictures.security.images import process_candidate
from listing_pictures.security.uploads import (
    MAX_BYTES,
    ImageFormat,
    UploadCandidate,
    declared_extension,
    sniff_format,
    validate_basics,
)

ZIP_BYTES = b"PK\x03\x04\x14\x00\x00\x00\x08\x00" + b"\x00" * 32


class TestSniffFormat:
    @pytest.mark.parametrize(
        "fmt, expected",
        [
            ("JPEG", ImageFormat.JPEG),
            ("PNG", ImageFormat.PNG),
            ("GIF", ImageFormat.GIF),
            ("WEBP", ImageFormat.WEBP),
        ],
    )
    def test_detects_real_images(self, make_image, fmt, expected):
        assert sniff_format(make_image(fmt)) == expected

    def test_detects_gif87a(self):
        assert sniff_format(b"GIF87a" + b"\x00" * 10) == ImageFormat.GIF

    def test_rejects_zip_archive(self):
        assert sniff_format(ZIP_BYTES) is None

    def test_rejects_short_or_empty_input(self):
        assert sniff_format(b"") is None
        assert sniff_format(b"\xff\xd8") is None

    def test_riff_prefix_is_only_a_prefilter(self):
        wav_header = b"RIFF\x24\x00\x00\x00WAVEfmt "
        assert sniff_format(wav_header) == ImageFormat.WEBP


class TestValidateBasics:
    def test_accepts_allowed_image(self, make_image):
        validate_basics(UploadCandidate(make_image("PNG"), "photo.png", "image/png"))

    def test_empty_file_is_a_size_violation(self):
        with pytest.raises(EmptyFile) as exc_info:
            validate_basics(UploadCandidate(b"", "photo.jpg", "image/jpeg"))
        assert isinstance(exc_info.value, FileTooLarge)
        assert exc_info.value.status == 400

    def test_rejects_oversized_file(self):
        candidate = UploadCandidate(b"\xff\xd8\xff" + b"\x00" * MAX_BYTES, "big.jpg", "image/jpeg")
        with pytest.raises(FileTooLarge) as exc_info:
            validate_basics(candidate)
        assert exc_info.value.code == "file_too_large"
        assert exc_info.value.status == 413

    def test_file_at_exact_limit_passes_basics(self):
        validate_basics(UploadCandidate(b"\x00" * MAX_BYTES, "edge.jpg", "image/jpeg"))

    @pytest.mark.parametrize("filename", ["malware.exe", "archive.zip", "noextension", "", "image.jpg.php"])
    def test_rejects_disallowed_extensions(self, filename):
        with pytest.raises(ExtensionNotAllowed):
            validate_basics(UploadCandidate(b"\xff\xd8\xff\xe0", filename, "image/jpeg"))

    def test_extension_check_is_case_insensitive(self):
        validate_basics(UploadCandidate(b"\xff\xd8\xff\xe0", "HOLIDAY.JPEG", "image/jpeg"))

    @pytest.mark.parametrize("content_type", ["application/pdf", "text/plain", "", "image/svg+xml"])
    def test_rejects_disallowed_mime_types(self, content_type):
        with pytest.raises(MimeTypeNotAllowed):
            validate_basics(UploadCandidate(b"\xff\xd8\xff\xe0", "photo.jpg", content_type))

    def test_mime_check_is_case_insensitive(self):
        validate_basics(UploadCandidate(b"\x89PNG", "photo.png", "IMAGE/PNG"))

    def test_size_is_checked_before_extension(self):
        candidate = UploadCandidate(b"\x00" * (MAX_BYTES + 1), "malware.exe", "application/x-msdownload")
        with pytest.raises(FileTooLarge):
            validate_basics(candidate)

    def test_extension_is_checked_before_mime_type(self):
        with pytest.raises(ExtensionNotAllowed):
            validate_basics(UploadCandidate(b"\x00\x01", "test.exe", "application/pdf"))


def test_declared_extension_handles_missing_names():
    assert declared_extension(None) == ""
    assert declared_extension("dir/photo.Png") == ".png"


def test_oversized_upload_is_rejected_before_decode(monkeypatch):
    def fail_decode(data):
        raise AssertionError("decoder must not run for oversized uploads")

    monkeypatch.setattr(images_module, "decode_image", fail_decode)
    candidate = UploadCandidate(b"\xff\xd8\xff" + b"\x00" * MAX_BYTES, "huge.jpg", "image/jpeg")
    with pytest.raises(FileTooLarge):
        process_candidate(candidate)
