# Overview: Object storage collaborator for proof-of-purchase files (local filesystem adapter).

"""
Object Storage Service

The core only needs an opaque key and a retrievable URL for each stored
object. This adapter writes under UPLOAD_FOLDER and serves URLs under
UPLOAD_URL_PREFIX; a cloud bucket adapter would keep the same signature.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

from ..errors import ValidationError
from ..time_utils import utcnow


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str


def _upload_root() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    if not os.path.isabs(folder):
        folder = os.path.join(current_app.root_path, "..", folder)
    return os.path.abspath(folder)


def save_object(
    data: bytes,
    *,
    filename: str,
    mime_type: str,
    folder: str = "misc",
) -> StoredObject:
    """
    Store bytes and return (key, url).

    Raises ValidationError for empty payloads, oversized payloads and MIME
    types outside ALLOWED_PROOF_MIME_TYPES.
    """
    if not data:
        raise ValidationError("Uploaded file is empty")

    max_bytes = current_app.config["MAX_PROOF_BYTES"]
    if len(data) > max_bytes:
        raise ValidationError(
            f"File too large. Maximum size is {max_bytes} bytes",
            size=len(data),
        )

    allowed = current_app.config["ALLOWED_PROOF_MIME_TYPES"]
    if mime_type not in allowed:
        raise ValidationError(
            f"Unsupported file type {mime_type}. Allowed: {', '.join(allowed)}",
            mime_type=mime_type,
        )

    safe_name = secure_filename(filename or "") or "upload"
    safe_folder = "/".join(secure_filename(part) for part in folder.split("/") if secure_filename(part))
    stamp = utcnow().strftime("%Y%m%d%H%M%S")
    key = f"{safe_folder}/{stamp}-{uuid.uuid4().hex[:8]}-{safe_name}"

    path = os.path.join(_upload_root(), *key.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(data)

    prefix = current_app.config["UPLOAD_URL_PREFIX"].rstrip("/")
    current_app.logger.info("Stored object %s (%s bytes)", key, len(data))
    return StoredObject(key=key, url=f"{prefix}/{key}")
