# imgproxy/core/classifier.py
"""Decide whether an accepted upstream response may be relayed as an image."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Union

IMAGE_PREFIX = "image/"
# S3 serves some image objects with this non-standard type
OCTET_STREAM_ALIAS = "binary/octet-stream"


@dataclass(frozen=True)
class Accept:
    content_type: str


@dataclass(frozen=True)
class Reject:
    reason: str


Classification = Union[Accept, Reject]

NOT_AN_IMAGE = "NotAnImage"


def classify_content_type(content_type: str | None) -> Classification:
    """
    Accept ``image/*`` or exactly ``binary/octet-stream``.

    An absent or empty header is rejected, even on a 200 response.
    """
    if not content_type or not content_type.isascii():
        # Non-ASCII (including aiohttp's surrogate escapes) cannot be echoed as a header
        return Reject(NOT_AN_IMAGE)
    if content_type.startswith(IMAGE_PREFIX) or content_type == OCTET_STREAM_ALIAS:
        return Accept(content_type)
    return Reject(NOT_AN_IMAGE)


def classify(response) -> Classification:
    """Classify an upstream response by its ``Content-Type`` header."""
    headers: Mapping[str, str] = response.headers
    return classify_content_type(headers.get("Content-Type"))
