"""
Vorbis comment packet scanner and decoder.

Locates comment packets inside a raw Ogg/Vorbis byte stream and decodes
their length-prefixed fields into key/value pairs. Works on partial data:
a packet that is cut off by the end of the buffer is reported as
incomplete so it can be decoded again once more bytes have arrived.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple, Union

from .models import MetadataRecord

logger = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]

VORBIS_TAG = b"vorbis"

# Packet type byte followed by the "vorbis" tag
IDENTIFICATION_SIGNATURE = b"\x01" + VORBIS_TAG  # initial metadata
COMMENT_SIGNATURE = b"\x03" + VORBIS_TAG  # metadata update
SIGNATURES = (IDENTIFICATION_SIGNATURE, COMMENT_SIGNATURE)
SIGNATURE_LENGTH = len(COMMENT_SIGNATURE)

_U32 = struct.Struct("<I")


class PacketError(Exception):
    """Base class for comment packet decoding errors."""


class IncompletePacketError(PacketError):
    """Raised when the buffer ends before the packet does."""


class InvalidPacketError(PacketError):
    """Raised when a signature hit is not followed by the vorbis tag."""


def find_comment_offsets(buffer: Buffer, start: int = 0) -> List[int]:
    """Find every comment packet signature in a buffer.

    Both signature types are searched independently. Each returned offset
    points just past the packet type byte, at the "vorbis" tag.

    Args:
        buffer: Raw stream bytes
        start: Position to start searching from

    Returns:
        Sorted list of offsets, one per match
    """
    data = bytes(buffer) if isinstance(buffer, memoryview) else buffer
    positions = []

    for signature in SIGNATURES:
        pos = data.find(signature, start)
        while pos != -1:
            positions.append(pos + 1)
            pos = data.find(signature, pos + 1)

    positions.sort()
    return positions


class ByteReader:
    """Cursor over a buffer for little-endian length-prefixed fields."""

    def __init__(self, buffer: Buffer, offset: int = 0):
        self.buffer = buffer
        self.pos = offset

    @property
    def remaining(self) -> int:
        return len(self.buffer) - self.pos

    def read(self, length: int) -> bytes:
        if length > self.remaining:
            raise IncompletePacketError(
                f"need {length} bytes at {self.pos}, {self.remaining} available"
            )
        data = bytes(self.buffer[self.pos : self.pos + length])
        self.pos += length
        return data

    def read_u32(self) -> int:
        if self.remaining < _U32.size:
            raise IncompletePacketError(f"need 4 bytes at {self.pos}, {self.remaining} available")
        (value,) = _U32.unpack_from(self.buffer, self.pos)
        self.pos += _U32.size
        return value

    def read_string(self) -> bytes:
        """Read a u32 length followed by that many bytes."""
        length = self.read_u32()
        return self.read(length)

    def expect(self, tag: bytes) -> None:
        data = self.read(len(tag))
        if data != tag:
            raise InvalidPacketError(f"expected {tag!r} at {self.pos - len(tag)}, got {data!r}")


def split_comment(raw: bytes) -> Tuple[str, str]:
    """Split a raw comment entry into a trimmed (key, value) pair.

    Invalid UTF-8 is replaced rather than rejected. Without an "=" the
    whole text is the key and the value is empty.
    """
    text = raw.decode("utf-8", errors="replace")
    key, _, value = text.partition("=")
    return key.strip(), value.strip()


def iter_comments(reader: ByteReader) -> Iterator[Tuple[str, str]]:
    """Yield the comments of the packet under ``reader`` one at a time.

    The reader must be positioned at the "vorbis" tag. Each pair is
    yielded as soon as its bytes have been read, so a consumer keeps
    every entry that arrived before the reader ran out of data.

    Raises:
        IncompletePacketError: If the buffer ends before the packet
        InvalidPacketError: If the vorbis tag is missing
    """
    reader.expect(VORBIS_TAG)
    reader.read_string()  # vendor string, not used
    count = reader.read_u32()

    for _ in range(count):
        yield split_comment(reader.read_string())


def decode_comments(data: Buffer, offset: int = 0) -> List[Tuple[str, str]]:
    """Decode all comments of a packet starting at the vorbis tag.

    Strict form of the decoding CommentBlockParser performs: the packet
    must be complete and well formed.

    Args:
        data: Buffer holding the packet
        offset: Position of the "vorbis" tag

    Returns:
        Ordered list of (key, value) pairs

    Raises:
        IncompletePacketError: If the buffer ends before the packet
        InvalidPacketError: If the vorbis tag is missing
    """
    return list(iter_comments(ByteReader(data, offset)))


@dataclass
class ParseResult:
    """Outcome of decoding one comment packet into a record.

    Attributes:
        changed: At least one record field changed
        complete: The packet was decoded to its end
        valid: The vorbis tag was present
        end: Buffer position after the last decoded byte
        comments: Pairs merged in this pass, in packet order
    """

    changed: bool = False
    complete: bool = False
    valid: bool = True
    end: int = 0
    comments: List[Tuple[str, str]] = field(default_factory=list)


class CommentBlockParser:
    """Decodes comment packets and merges their entries into a record.

    Entries are merged as soon as they are decoded, so a packet that is
    cut short still contributes the entries that did arrive. Entries
    with an empty key carry no metadata and are skipped; they show up
    when an identification header is read as if it held comments.
    """

    def parse(self, buffer: Buffer, offset: int, record: MetadataRecord) -> ParseResult:
        """Decode the packet at ``offset`` and merge it into ``record``.

        Args:
            buffer: Stream buffer
            offset: Position reported by find_comment_offsets
            record: Record to merge into

        Returns:
            ParseResult describing what happened
        """
        reader = ByteReader(buffer, offset)
        result = ParseResult(end=offset)

        try:
            for key, value in iter_comments(reader):
                result.end = reader.pos
                if not key:
                    continue
                result.comments.append((key, value))
                if record.apply(key, value):
                    result.changed = True

            result.complete = True
            result.end = reader.pos
        except IncompletePacketError as e:
            logger.debug(f"Comment packet at {offset} incomplete: {e}")
        except InvalidPacketError as e:
            logger.debug(f"Ignoring signature match at {offset}: {e}")
            result.valid = False
            result.complete = True
            result.end = reader.pos

        return result
