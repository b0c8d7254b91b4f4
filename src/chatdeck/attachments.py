"""
Attachment adapter — local files to transferable Attachment values.
"""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path

from chatdeck.session.models import Attachment

DEFAULT_MIME_TYPE = "application/octet-stream"


def attachment_from_bytes(
    name: str, data: bytes, mime_type: str | None = None
) -> Attachment:
    """Encode raw bytes; the mime type is guessed from the name if not given."""
    mime_type = mime_type or mimetypes.guess_type(name)[0] or DEFAULT_MIME_TYPE
    payload = base64.b64encode(data).decode("ascii")
    return Attachment(
        name=name,
        mime_type=mime_type,
        preview_reference=f"data:{mime_type};base64,{payload}",
        encoded_payload=payload,
    )


def attachment_from_path(path: str | Path) -> Attachment:
    path = Path(path).expanduser()
    return attachment_from_bytes(path.name, path.read_bytes())
