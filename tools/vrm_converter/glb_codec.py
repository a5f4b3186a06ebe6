"""Reader and writer for GLB (binary glTF) containers."""
import logging
import struct
from typing import List

from glb_types import (
    CHUNK_HEADER_SIZE,
    CHUNK_TYPE_BIN,
    CHUNK_TYPE_JSON,
    GLB_MAGIC,
    GLB_VERSION_MAX,
    GLB_VERSION_MIN,
    HEADER_SIZE,
    Container,
    GlbChunk,
    GlbHeader,
    padded_length,
)
from vrm_errors import InvalidChunkLength, MalformedHeader, TruncatedInput, UnexpectedChunkOrder

logger = logging.getLogger(__name__)


class GlbCodec:
    """Decodes and encodes GLB containers held fully in memory."""

    def parse_header_bytes(self, data: bytes) -> GlbHeader:
        """Parse the 12-byte GLB header.

        Args:
            data: At least 12 bytes of header data

        Returns:
            GlbHeader with parsed data

        Raises:
            TruncatedInput: If fewer than 12 bytes are supplied
            MalformedHeader: If magic, version or length are invalid
        """
        if len(data) < HEADER_SIZE:
            raise TruncatedInput(
                f"Header needs {HEADER_SIZE} bytes, got {len(data)}", offset=len(data)
            )

        magic = bytes(data[:4])
        if magic != GLB_MAGIC:
            raise MalformedHeader(f"Invalid GLB magic: {magic!r}", offset=0)

        version, length = struct.unpack("<II", data[4:12])
        if not GLB_VERSION_MIN <= version <= GLB_VERSION_MAX:
            raise MalformedHeader(f"Unsupported GLB version: {version}", offset=4)
        if length < HEADER_SIZE:
            raise MalformedHeader(f"Declared length {length} is smaller than the header", offset=8)

        return GlbHeader(magic=magic, version=version, length=length)

    def decode(self, data: bytes) -> Container:
        """Decode a complete GLB file.

        Bytes past the declared total length are ignored. Chunk payloads are
        zero-copy views into ``data``.

        Args:
            data: Entire file contents

        Returns:
            Container with header and chunks

        Raises:
            ContainerError: On any structural defect; nothing is returned
                partially decoded
        """
        header = self.parse_header_bytes(data)
        if len(data) < header.length:
            raise TruncatedInput(
                f"Header declares {header.length} bytes, only {len(data)} supplied",
                offset=len(data),
            )
        if len(data) > header.length:
            logger.debug("Ignoring %d trailing bytes", len(data) - header.length)

        view = memoryview(data)
        chunks: List[GlbChunk] = []
        offset = HEADER_SIZE
        while offset < header.length:
            index = len(chunks)
            if offset + CHUNK_HEADER_SIZE > header.length:
                raise InvalidChunkLength(
                    "Chunk header extends past declared length", offset=offset, chunk_index=index
                )

            byte_length, chunk_type = struct.unpack("<II", view[offset:offset + CHUNK_HEADER_SIZE])
            if byte_length % 4 != 0:
                raise InvalidChunkLength(
                    f"Chunk length {byte_length} is not a multiple of 4",
                    offset=offset,
                    chunk_index=index,
                )
            start = offset + CHUNK_HEADER_SIZE
            end = start + byte_length
            if end > header.length:
                raise InvalidChunkLength(
                    f"Chunk of {byte_length} bytes ends at {end}, past declared length {header.length}",
                    offset=offset,
                    chunk_index=index,
                )

            self._check_order(chunks, chunk_type, offset)
            chunks.append(
                GlbChunk(
                    chunk_type=chunk_type,
                    payload=view[start:end],
                    byte_length=byte_length,
                    offset=offset,
                )
            )
            logger.debug("Chunk %d: %s at %d, %d bytes", index, chunks[-1].name, offset, byte_length)
            offset = end

        if not chunks:
            raise UnexpectedChunkOrder("Container has no JSON chunk", offset=HEADER_SIZE, chunk_index=0)

        return Container(header=header, chunks=chunks)

    def _check_order(self, chunks: List[GlbChunk], chunk_type: int, offset: int):
        """Enforce JSON first, then at most one BIN chunk."""
        index = len(chunks)
        if index == 0:
            if chunk_type != CHUNK_TYPE_JSON:
                raise UnexpectedChunkOrder(
                    f"First chunk must be JSON, found 0x{chunk_type:08X}",
                    offset=offset,
                    chunk_index=index,
                )
        elif chunk_type == CHUNK_TYPE_JSON:
            raise UnexpectedChunkOrder("Duplicate JSON chunk", offset=offset, chunk_index=index)
        elif chunk_type == CHUNK_TYPE_BIN:
            if index > 1:
                raise UnexpectedChunkOrder("Duplicate BIN chunk", offset=offset, chunk_index=index)
        else:
            raise UnexpectedChunkOrder(
                f"Unknown chunk type 0x{chunk_type:08X}", offset=offset, chunk_index=index
            )

    def encode(self, container: Container) -> bytes:
        """Encode a container to GLB bytes.

        Chunk lengths and the total length are recomputed from the payloads;
        the JSON chunk is padded with spaces and the BIN chunk with zeros.

        Args:
            container: Container to write; must hold a JSON chunk first

        Returns:
            Complete GLB file contents
        """
        if not container.chunks or not container.chunks[0].is_json:
            raise UnexpectedChunkOrder("Container must start with a JSON chunk", chunk_index=0)
        for index, chunk in enumerate(container.chunks[1:], start=1):
            if index > 1 or not chunk.is_bin:
                raise UnexpectedChunkOrder(
                    f"Unexpected {chunk.name} chunk", chunk_index=index
                )

        body = []
        total = HEADER_SIZE
        for chunk in container.chunks:
            payload = bytes(chunk.payload)
            padded = padded_length(len(payload))
            body.append(struct.pack("<II", padded, chunk.chunk_type))
            body.append(payload)
            body.append(chunk.padding_byte * (padded - len(payload)))
            total += CHUNK_HEADER_SIZE + padded

        header = struct.pack("<4sII", GLB_MAGIC, container.header.version, total)
        return header + b"".join(body)

    def encode_parts(self, json_data: bytes, bin_data=None) -> bytes:
        """Encode a JSON document and optional binary buffer."""
        return self.encode(Container.from_parts(json_data, bin_data))
