"""File storage for order item attachments (images and PDFs)."""

from __future__ import annotations

import logging
import os
import pathlib
import uuid

from werkzeug.utils import secure_filename

from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "pdf"}
ALLOWED_MIME_PREFIXES = ("image/", "application/pdf")

# الحد الأقصى لعدد المرفقات لكل بند
MAX_ITEM_ATTACHMENTS = 5


def file_extension(filename: str | None) -> str:
    _, ext = os.path.splitext(filename or "")
    return ext.lstrip(".").lower()


def validate_upload(file_storage, *, field: str = "attachment") -> str:
    """Return the cleaned original filename or raise ``ValidationError``."""

    original = (getattr(file_storage, "filename", None) or "").strip()
    if not original:
        raise ValidationError("attachment file name required", field=field)

    ext = file_extension(original)
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"unsupported attachment type '.{ext}' (allowed: jpg, jpeg, png, pdf)",
            field=field,
        )

    mimetype = (getattr(file_storage, "mimetype", None) or "").lower()
    if mimetype and mimetype != "application/octet-stream" and not mimetype.startswith(
        ALLOWED_MIME_PREFIXES
    ):
        raise ValidationError(f"unsupported attachment content type '{mimetype}'", field=field)

    return original


class AttachmentStore:
    def __init__(self, base_path: str | os.PathLike):
        self.base_path = pathlib.Path(base_path)

    def path_for(self, stored_filename: str | None) -> pathlib.Path:
        stored = (stored_filename or "").strip()
        if not stored or os.path.basename(stored) != stored or ".." in stored:
            raise NotFound("attachment file", stored_filename)
        return self.base_path / stored

    def save(self, file_storage) -> tuple[str, int]:
        """Write the upload under a random name; return ``(stored_filename, size)``."""

        ext = file_extension(secure_filename(file_storage.filename or "")) or file_extension(
            file_storage.filename
        )
        stored_filename = f"{uuid.uuid4().hex}.{ext}"

        self.base_path.mkdir(parents=True, exist_ok=True)
        target = self.base_path / stored_filename
        file_storage.save(str(target))
        return stored_filename, target.stat().st_size

    def remove(self, stored_filename: str | None) -> None:
        """Best-effort removal of the attachment file without raising."""

        try:
            path = self.path_for(stored_filename)
        except NotFound:
            return

        try:
            if path.is_file():
                path.unlink(missing_ok=True)
        except OSError:
            logger.warning("could not remove attachment file %s", path, exc_info=True)
