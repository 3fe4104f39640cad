"""Attachment normalization for multimodal prompts.

Callers hand over images or videos as a URL or as raw data (bytes, a
base64 string, or a data URI). These helpers turn them into the typed
content parts that OpenAI-compatible chat APIs accept:

    image -> {"type": "image_url", "image_url": {"url": <url or data URI>}}
    video -> {"type": "input_video", "video": {"url": ...}}
             {"type": "input_video", "video": {"data": <base64>, "format": "mp4"}}
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Any, Literal

import structlog

log = structlog.get_logger(__name__)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Attachment:
    """Media sent along with a prompt.

    Attributes:
        type: "image" or "video"
        url: Remote URL the provider fetches itself
        data: Raw bytes, base64 text, or a data URI
        mime_type: Format hint for inline data (e.g. "image/jpeg")
        format: Explicit video format override (e.g. "mp4")
    """

    type: Literal["image", "video"]
    url: str | None = None
    data: bytes | str | None = None
    mime_type: str | None = None
    format: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Attachment:
        return cls(
            type=str(raw.get("type", "")).lower(),  # type: ignore[arg-type]
            url=raw.get("url"),
            data=raw.get("data"),
            mime_type=raw.get("mime_type") or raw.get("mimeType"),
            format=raw.get("format"),
        )


def to_base64(data: bytes | str | None) -> str | None:
    """Encode data as base64, passing through strings that already are."""
    if not data:
        return None
    if isinstance(data, bytes | bytearray):
        return base64.b64encode(bytes(data)).decode("ascii")
    if isinstance(data, str):
        trimmed = data.strip()
        if not trimmed:
            return None
        if trimmed.startswith("data:"):
            payload = trimmed[trimmed.find(",") + 1 :].strip()
            return payload or None
        compact = _WHITESPACE_RE.sub("", trimmed)
        if _BASE64_RE.match(compact):
            return compact
        return base64.b64encode(trimmed.encode("utf-8")).decode("ascii")
    return None


def to_data_uri(data: bytes | str | None, mime_type: str) -> str | None:
    if not data:
        return None
    if isinstance(data, str) and data.strip().startswith("data:"):
        return data.strip()
    encoded = to_base64(data)
    if not encoded:
        return None
    return f"data:{mime_type};base64,{encoded}"


def mime_type_to_format(mime_type: str | None) -> str | None:
    """Return the bare subtype of a MIME type ("video/mp4; codecs=x" -> "mp4")."""
    if not mime_type or "/" not in mime_type:
        return None
    subtype = mime_type.split("/", 1)[1]
    return subtype.split(";", 1)[0].strip() or None


def normalize_attachment(
    attachment: Attachment | dict[str, Any] | None,
    *,
    allow_video: bool = True,
    provider: str = "provider",
) -> dict[str, Any] | None:
    """Convert one attachment to a content part, or None if unusable."""
    if attachment is None:
        return None
    if isinstance(attachment, dict):
        attachment = Attachment.from_dict(attachment)
    kind = str(attachment.type or "").lower()

    if kind == "image":
        if attachment.url:
            return {"type": "image_url", "image_url": {"url": attachment.url}}
        data_uri = to_data_uri(attachment.data, attachment.mime_type or "image/png")
        if not data_uri:
            return None
        return {"type": "image_url", "image_url": {"url": data_uri}}

    if kind == "video":
        if not allow_video:
            log.warning("attachments.video_unsupported", provider=provider)
            return None
        if attachment.url:
            return {"type": "input_video", "video": {"url": attachment.url}}
        encoded = to_base64(attachment.data)
        if not encoded:
            return None
        video: dict[str, Any] = {"data": encoded}
        resolved_format = attachment.format or mime_type_to_format(attachment.mime_type)
        if resolved_format:
            video["format"] = resolved_format
        return {"type": "input_video", "video": video}

    return None


def normalize_attachments(
    attachments: list[Attachment | dict[str, Any]] | None,
    *,
    allow_video: bool = True,
    provider: str = "provider",
) -> list[dict[str, Any]]:
    parts = (
        normalize_attachment(a, allow_video=allow_video, provider=provider)
        for a in attachments or []
    )
    return [part for part in parts if part is not None]
