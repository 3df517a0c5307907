"""Text-safe encoding of binary buffers and shared sync configuration.

Host APIs that only accept text (preference stores, share links, clipboard)
carry database images and sync settings as base64 strings.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from urllib.parse import unquote

from .errors import ConfigurationError, ParseError


def encode_bytes(data: bytes) -> str:
    """Encode a binary buffer as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: str) -> bytes:
    """Decode base64 text back into bytes.

    Spaces are treated as ``+`` (form-encoded links turn one into the other)
    and missing padding is restored.

    Raises:
        ParseError: If the text is not valid base64.
    """
    cleaned = "".join(text.replace(" ", "+").split())
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"Invalid base64 payload: {e}") from e


@dataclass
class SharedSyncConfig:
    """Sync settings packed into a share link."""

    server: str
    username: str
    password: str
    timestamp: int | None = None


def encode_sync_config(
    server: str, username: str, password: str, now_ms: int
) -> str:
    """Pack sync settings into a base64 token for sharing with another device."""
    if not server or not username or not password:
        raise ConfigurationError("Server, username and password are required to share")

    payload = json.dumps(
        {"s": server, "u": username, "p": password, "t": now_ms},
        separators=(",", ":"),
    )
    return encode_bytes(payload.encode("utf-8"))


def decode_sync_config(token: str) -> SharedSyncConfig:
    """Reverse :func:`encode_sync_config`.

    Accepts URL-quoted tokens as they appear in share links.

    Raises:
        ParseError: If the token is malformed or incomplete.
    """
    raw = decode_bytes(unquote(token.strip()))
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ParseError(f"Shared config is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not all(data.get(k) for k in ("s", "u", "p")):
        raise ParseError("Shared config is incomplete")

    return SharedSyncConfig(
        server=str(data["s"]),
        username=str(data["u"]),
        password=str(data["p"]),
        timestamp=data.get("t"),
    )
