"""Type definitions for the GLB container format."""
from dataclasses import dataclass, field
from typing import List, Optional, Union

GLB_MAGIC = b"glTF"
GLB_VERSION_MIN = 2
GLB_VERSION_MAX = 2

# magic(4) + version(4) + length(4)
HEADER_SIZE = 12
# length(4) + type(4)
CHUNK_HEADER_SIZE = 8

CHUNK_TYPE_JSON = 0x4E4F534A  # "JSON"
CHUNK_TYPE_BIN = 0x004E4942  # "BIN\0"

JSON_PADDING = b"\x20"
BIN_PADDING = b"\x00"

CHUNK_NAMES = {
    CHUNK_TYPE_JSON: "JSON",
    CHUNK_TYPE_BIN: "BIN",
}

Payload = Union[bytes, memoryview]


def padded_length(length: int) -> int:
    """Round a byte count up to the next 4-byte boundary."""
    return (length + 3) & ~3


@dataclass
class GlbHeader:
    """GLB file header."""

    magic: bytes
    version: int
    length: int


@dataclass
class GlbChunk:
    """GLB chunk.

    ``byte_length`` is the length as stored in the file, which is always the
    padded length. ``payload`` holds exactly ``byte_length`` bytes once read
    from a file; freshly built chunks may carry an unpadded payload and get
    padded on encode.
    """

    chunk_type: int
    payload: Payload = b""
    byte_length: int = 0
    offset: int = 0

    @property
    def name(self) -> str:
        return CHUNK_NAMES.get(self.chunk_type, f"0x{self.chunk_type:08X}")

    @property
    def is_json(self) -> bool:
        return self.chunk_type == CHUNK_TYPE_JSON

    @property
    def is_bin(self) -> bool:
        return self.chunk_type == CHUNK_TYPE_BIN

    @property
    def padding_byte(self) -> bytes:
        return JSON_PADDING if self.is_json else BIN_PADDING

    @property
    def data(self) -> bytes:
        """Logical chunk content.

        The JSON chunk drops its trailing space padding, the BIN chunk is
        returned as stored.
        """
        raw = bytes(self.payload)
        if self.is_json:
            return raw.rstrip(JSON_PADDING)
        return raw


@dataclass
class Container:
    """A decoded GLB file: header plus its JSON and optional BIN chunk."""

    header: GlbHeader = field(
        default_factory=lambda: GlbHeader(magic=GLB_MAGIC, version=GLB_VERSION_MAX, length=0)
    )
    chunks: List[GlbChunk] = field(default_factory=list)

    @classmethod
    def from_parts(cls, json_data: bytes, bin_data: Optional[Payload] = None) -> "Container":
        """Build a container from a JSON document and an optional binary buffer."""
        chunks = [GlbChunk(chunk_type=CHUNK_TYPE_JSON, payload=json_data, byte_length=len(json_data))]
        if bin_data is not None:
            chunks.append(GlbChunk(chunk_type=CHUNK_TYPE_BIN, payload=bin_data, byte_length=len(bin_data)))
        return cls(chunks=chunks)

    @property
    def json_chunk(self) -> Optional[GlbChunk]:
        return next((c for c in self.chunks if c.is_json), None)

    @property
    def bin_chunk(self) -> Optional[GlbChunk]:
        return next((c for c in self.chunks if c.is_bin), None)

    @property
    def json_data(self) -> bytes:
        chunk = self.json_chunk
        return chunk.data if chunk else b""

    @property
    def bin_data(self) -> Optional[bytes]:
        chunk = self.bin_chunk
        return chunk.data if chunk else None
