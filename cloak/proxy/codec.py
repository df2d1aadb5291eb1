"""Reversible encoding of target URLs into query-string tokens."""
from __future__ import annotations

import base64
import binascii


class DecodingError(ValueError):
    """Raised when a token is not valid base64 or not UTF-8 text."""


def encode(url: str) -> str:
    """Return the standard base64 form of the URL's UTF-8 bytes."""
    return base64.b64encode(url.encode("utf-8")).decode("ascii")


def decode(token: str) -> str:
    """Recover the URL carried by ``token``.

    Form decoding turns a literal ``+`` into a space, so spaces are mapped
    back before the strict base64 check.
    """
    cleaned = token.strip().replace(" ", "+")
    if not cleaned:
        raise DecodingError("empty token")
    try:
        raw = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodingError(f"invalid base64 token: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodingError("token does not decode to UTF-8 text") from exc
