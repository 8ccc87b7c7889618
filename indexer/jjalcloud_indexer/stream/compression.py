"""
zstd frame decompression with a shared dictionary.

Jetstream compresses every outbound message as its own zstd frame using a
fixed dictionary published with the Jetstream source. Frames never refer
to one another, so each one is decompressed with a fresh decompression
object; nothing carries over between messages.
"""

from __future__ import annotations

import logging
from pathlib import Path

import zstandard

from .base import StreamDecodeError

logger = logging.getLogger(__name__)


class ZstdDictionaryDecompressor:
    """Decompresses independent zstd frames with a preloaded dictionary.

    Example:
        >>> decompressor = ZstdDictionaryDecompressor.from_file("zstd_dictionary")
        >>> payload = decompressor.decompress(frame)
    """

    def __init__(self, dictionary: bytes) -> None:
        if not dictionary:
            raise ValueError("zstd dictionary is empty")
        self._dictionary_size = len(dictionary)
        self._dict = zstandard.ZstdCompressionDict(dictionary)
        self._dctx = zstandard.ZstdDecompressor(dict_data=self._dict)

    @classmethod
    def from_file(cls, path: str | Path) -> ZstdDictionaryDecompressor:
        """Load the dictionary from disk."""
        data = Path(path).read_bytes()
        decompressor = cls(data)
        logger.info(
            "Loaded zstd dictionary for Jetstream decompression",
            extra={"path": str(path), "dictionary_size": len(data)},
        )
        return decompressor

    @property
    def dictionary_size(self) -> int:
        return self._dictionary_size

    def decompress(self, frame: bytes) -> bytes:
        """Decompress one self-contained frame.

        Raises:
            StreamDecodeError: If the frame is not valid zstd for this dictionary
        """
        if not frame:
            raise StreamDecodeError("Empty compressed frame")
        try:
            return self._dctx.decompressobj().decompress(frame)
        except zstandard.ZstdError as e:
            raise StreamDecodeError(f"zstd decompression failed: {e}") from e
