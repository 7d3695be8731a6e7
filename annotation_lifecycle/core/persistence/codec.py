"""
Payload encoding between in-memory objects and backend strings.

Payloads are JSON. When compression is enabled the JSON is deflated
with zlib and base64-encoded behind a marker, so a reader can always
tell compressed from plain payloads and decode either.
"""

import base64
import binascii
import json
import logging
import zlib
from typing import Any

logger = logging.getLogger(__name__)

COMPRESSED_MARKER = "zlib:"


class PayloadCodec:
    """Serializes JSON-compatible objects to backend payload strings."""

    def __init__(self, compress: bool = False, level: int = 6):
        self.compress = compress
        self.level = level

    def encode(self, obj: Any) -> str:
        text = json.dumps(obj, sort_keys=True, separators=(",", ":"))
        if not self.compress:
            return text
        deflated = zlib.compress(text.encode("utf-8"), self.level)
        return COMPRESSED_MARKER + base64.b64encode(deflated).decode("ascii")

    def decode(self, payload: str) -> Any:
        """
        Decode a payload written with or without compression.

        Raises:
            ValueError: If the payload is neither valid JSON nor a valid
                compressed payload
        """
        if payload.startswith(COMPRESSED_MARKER):
            try:
                raw = base64.b64decode(payload[len(COMPRESSED_MARKER):], validate=True)
                payload = zlib.decompress(raw).decode("utf-8")
            except (binascii.Error, zlib.error, UnicodeDecodeError) as e:
                raise ValueError(f"Corrupt compressed payload: {e}") from e
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Payload is not valid JSON: {e}") from e
