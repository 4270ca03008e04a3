"""
Input image model.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from typing import Union

DATA_URI_PREFIX = "data:"


@dataclass(frozen=True)
class RawImage:
    """
    An image handed to the pipeline by the caller.

    Attributes:
        pixels: Encoded image bytes (JPEG/PNG) or a base64 data URI string.
        width: Width in pixels as reported by the capture source.
        height: Height in pixels as reported by the capture source.
        captured_at: Unix timestamp of capture.
    """
    pixels: Union[bytes, str]
    width: int
    height: int
    captured_at: float = field(default_factory=time.time)

    @property
    def is_data_uri(self) -> bool:
        return isinstance(self.pixels, str) and self.pixels.startswith(DATA_URI_PREFIX)

    def encoded_bytes(self) -> bytes:
        """Return the encoded image bytes, unwrapping a data URI if needed."""
        if isinstance(self.pixels, bytes):
            return self.pixels
        return base64.b64decode(self.base64_payload())

    def base64_payload(self) -> str:
        """Return the base64 payload without any data URI prefix."""
        if isinstance(self.pixels, bytes):
            return base64.b64encode(self.pixels).decode("ascii")
        if self.is_data_uri:
            return self.pixels.split(",", 1)[1]
        return self.pixels

    def to_data_uri(self, mime_type: str = "image/jpeg") -> str:
        if self.is_data_uri:
            return self.pixels
        return f"data:{mime_type};base64,{self.base64_payload()}"

    @classmethod
    def from_bytes(cls, data: bytes) -> "RawImage":
        """Create from encoded bytes, reading dimensions from the image header."""
        # imaging imports this module
        from imaging.preprocessor import decode_image

        pixels = decode_image(data)
        h, w = pixels.shape[:2]
        return cls(pixels=data, width=int(w), height=int(h))

    @classmethod
    def from_data_uri(cls, uri: str) -> "RawImage":
        if not uri.startswith(DATA_URI_PREFIX) or "," not in uri:
            raise ValueError("Not a base64 data URI")
        image = cls.from_bytes(base64.b64decode(uri.split(",", 1)[1]))
        return cls(pixels=uri, width=image.width, height=image.height, captured_at=image.captured_at)

    @classmethod
    def from_file(cls, path: str) -> "RawImage":
        with open(path, "rb") as f:
            return cls.from_bytes(f.read())
