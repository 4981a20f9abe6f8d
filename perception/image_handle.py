"""
perception/image_handle.py — Image handles and revocable display URIs.

An :class:`ImageHandle` is an immutable reference to a submitted image
payload plus the display URI a rendering surface uses to show it. URIs are
minted and revoked by a :class:`DisplayUriRegistry`; once revoked, the URI
no longer resolves to the payload.

Images are recognised by reading their header with Pillow. No pixel data
is decoded.
"""

from __future__ import annotations

import io
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from PIL import Image, UnidentifiedImageError

from core.constants import C


class InvalidInputError(ValueError):
    """
    Raised when a submitted payload is not recognisable image data.

    Rejection happens before any pipeline state changes; the caller may
    retry with a valid image.

    Args:
        reason: Short machine-friendly reason (``'empty_payload'``, …).
        detail: Optional human-readable explanation.
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"Invalid image input: {reason}" + (f" ({detail})" if detail else ""))


@dataclass(frozen=True)
class ImageInfo:
    """Header facts read from an image payload."""

    format: str
    mime_type: str
    width: int
    height: int


@dataclass(frozen=True)
class ImageHandle:
    """
    Immutable reference to one submitted image.

    ``payload`` is excluded from ``repr`` and equality so handles stay cheap
    to log and compare.
    """

    handle_id: str
    display_uri: str
    mime_type: str
    width: int
    height: int
    size_bytes: int
    payload: bytes = field(repr=False, compare=False)

    def to_dict(self) -> dict:
        """JSON-safe view without the payload."""
        return {
            "handle_id": self.handle_id,
            "display_uri": self.display_uri,
            "mime_type": self.mime_type,
            "width": self.width,
            "height": self.height,
            "size_bytes": self.size_bytes,
        }


def inspect_image(payload: object, mime_type: Optional[str] = None) -> ImageInfo:
    """
    Recognise *payload* as an image and return its header facts.

    Args:
        payload: Raw bytes (``bytes``, ``bytearray`` or ``memoryview``).
        mime_type: Optional MIME type claimed by the caller; when given it
            must start with ``image/``.

    Raises:
        InvalidInputError: If the payload is not bytes, is empty, claims a
            non-image MIME type, or has no recognisable image header.
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise InvalidInputError("not_bytes", type(payload).__name__)
    data = bytes(payload)
    if not data:
        raise InvalidInputError("empty_payload")
    if mime_type is not None and not mime_type.lower().startswith(C.IMAGE_MIME_PREFIX):
        raise InvalidInputError("non_image_mime", mime_type)

    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format or ""
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise InvalidInputError("unrecognised_image", str(exc)) from exc
    except (OSError, SyntaxError, ValueError) as exc:
        raise InvalidInputError("malformed_header", str(exc)) from exc

    if not fmt or width <= 0 or height <= 0:
        raise InvalidInputError("malformed_header", f"format={fmt!r} size={width}x{height}")

    mime = Image.MIME.get(fmt.upper(), f"image/{fmt.lower()}")
    return ImageInfo(format=fmt, mime_type=mime, width=width, height=height)


class DisplayUriRegistry:
    """
    Mints and revokes display URIs for image payloads.

    Thread-safe. Only live URIs can be revoked, so a URI is released at
    most once. The registry keeps a running total of revocations plus the
    most recent *history* revoked URIs; nothing else about a released
    image is retained.
    """

    def __init__(
        self,
        scheme: str = C.DISPLAY_URI_SCHEME,
        history: int = C.REVOKED_URI_HISTORY,
    ) -> None:
        if history < 1:
            raise ValueError(f"history must be >= 1, got {history}")
        self._scheme = scheme
        self._lock = threading.Lock()
        self._live: dict[str, bytes] = {}
        self._created = 0
        self._revoked_total = 0
        self._recent: deque[str] = deque(maxlen=history)

    def create(self, payload: bytes, mime_type: str, info: ImageInfo) -> ImageHandle:
        """Register *payload* under a fresh URI and return its handle."""
        handle_id = f"img-{uuid.uuid4().hex[:12]}"
        uri = self.uri_for(handle_id)
        with self._lock:
            self._live[uri] = payload
            self._created += 1
        return ImageHandle(
            handle_id=handle_id,
            display_uri=uri,
            mime_type=mime_type,
            width=info.width,
            height=info.height,
            size_bytes=len(payload),
            payload=payload,
        )

    def revoke(self, uri: str) -> bool:
        """
        Release *uri*. Returns False if it was unknown or already released.
        """
        with self._lock:
            if self._live.pop(uri, None) is None:
                return False
            self._revoked_total += 1
            self._recent.append(uri)
            return True

    def resolve(self, uri: str) -> Optional[bytes]:
        """Return the payload behind a live URI, or None once revoked."""
        with self._lock:
            return self._live.get(uri)

    def is_live(self, uri: str) -> bool:
        with self._lock:
            return uri in self._live

    def revocation_count(self, uri: str) -> int:
        """Times *uri* appears among the recent revocations (0 or 1)."""
        with self._lock:
            return self._recent.count(uri)

    @property
    def revoked_count(self) -> int:
        """Total successful revocations since the registry was created."""
        with self._lock:
            return self._revoked_total

    @property
    def recent_revocations(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._recent)

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    @property
    def created_count(self) -> int:
        with self._lock:
            return self._created

    def uri_for(self, handle_id: str) -> str:
        """Display URI minted for *handle_id*."""
        return f"{self._scheme}/{handle_id}"
