"""
Object storage for uploaded invoice documents.

Files are written under INVOICEFLOW_STORAGE_DIR using the key
``<company_id>/<timestamp>_<random>.<ext>`` and exposed through
INVOICEFLOW_PUBLIC_BASE_URL.
"""
from __future__ import annotations

import logging
import os
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from invoiceflow.services.errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# content type -> (file_type, extension)
ALLOWED_CONTENT_TYPES: Dict[str, Tuple[str, str]] = {
    "application/pdf": ("pdf", "pdf"),
    "application/xml": ("xml", "xml"),
    "text/xml": ("xml", "xml"),
    "image/png": ("png", "png"),
    "image/jpeg": ("jpeg", "jpg"),
    "image/jpg": ("jpeg", "jpg"),
}


def classify_upload(content_type: Optional[str], filename: str = "") -> Tuple[str, str]:
    """Return (file_type, extension) or raise ValidationError for unsupported files."""
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized in ALLOWED_CONTENT_TYPES:
        return ALLOWED_CONTENT_TYPES[normalized]
    # Some clients send application/octet-stream; fall back to the extension
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    by_ext = {"pdf": ("pdf", "pdf"), "xml": ("xml", "xml"), "png": ("png", "png"),
              "jpg": ("jpeg", "jpg"), "jpeg": ("jpeg", "jpg")}
    if normalized in ("", "application/octet-stream") and ext in by_ext:
        return by_ext[ext]
    raise ValidationError(
        "Unsupported file type. Allowed: PDF, XML, PNG, JPEG",
        context={"content_type": content_type},
    )


class LocalObjectStorage:
    """Filesystem-backed object store returning public URLs."""

    def __init__(self, root_dir: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root_dir = os.path.abspath(root_dir or os.getenv("INVOICEFLOW_STORAGE_DIR", "local_storage"))
        self.public_base_url = (
            public_base_url
            or os.getenv("INVOICEFLOW_PUBLIC_BASE_URL", "http://localhost:8000/storage")
        ).rstrip("/")

    def build_key(self, company_id: str, extension: str) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        return f"{company_id}/{timestamp}_{secrets.token_hex(4)}.{extension}"

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under ``key`` and return the public URL."""
        path = os.path.join(self.root_dir, *key.split("/"))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            logger.error(f"Failed to store {key}: {exc}")
            raise DependencyError("storage", str(exc))
        logger.info(f"Stored {key} ({len(data)} bytes, {content_type})")
        return f"{self.public_base_url}/{key}"

    def local_path(self, key: str) -> str:
        return os.path.join(self.root_dir, *key.split("/"))
