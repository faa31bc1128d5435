"""
Generic MP4 box tree.

A box is one length-prefixed, typed node of the ISO base media file
format. It is either a leaf carrying payload bytes or an internal node
carrying ordered child boxes, never both. Full boxes additionally carry
a 1-byte version and 3 bytes of flags after the type.

Serialized layout:
    [4-byte size][4-byte type][version(1) + flags(3), full boxes only][payload | children...]
"""

import logging
import struct
from dataclasses import dataclass, field

from m4a_muxer.errors import InvariantError
from m4a_muxer.utils.byte_writer import ByteWriter

logger = logging.getLogger(__name__)

BOX_HEADER_SIZE = 8
FULL_BOX_HEADER_SIZE = 4


def format_hex(data: bytes, words_per_line: int = 8) -> str:
    """Format bytes as uppercase hex, grouped in 32-bit words, for debugging."""
    lines = []
    line_size = words_per_line * 4
    for start in range(0, len(data), line_size):
        chunk = data[start : start + line_size]
        words = [chunk[i : i + 4].hex().upper() for i in range(0, len(chunk), 4)]
        lines.append(" ".join(words))
    return "\n".join(lines)


@dataclass(frozen=True)
class VersionFlags:
    """Version and flags of a full box."""

    version: int = 0
    flags: int = 0


@dataclass
class Leaf:
    payload: bytes = b""


@dataclass
class Internal:
    children: list["Box"] = field(default_factory=list)


def type_code(box_type: str) -> int:
    """Convert a four character box type (e.g. ``"moov"``) to its 32-bit code."""
    if len(box_type) != 4 or not box_type.isascii():
        raise InvariantError(f"Box type must be 4 ASCII characters, got {box_type!r}")
    return struct.unpack(">I", box_type.encode("ascii"))[0]


class Box:
    """
    One node of a box tree.

    Usage:
        moov = Box.new_internal("moov")
        mvhd = Box.new_leaf("mvhd", VersionFlags())
        mvhd.set_payload(payload)
        moov.add_child(mvhd)
        data = moov.serialize()

    ``size`` is derived from the content on every access, so it can never
    go stale when a descendant's payload is replaced.
    """

    def __init__(self, box_type: str, content: Leaf | Internal, version_flags: VersionFlags | None = None) -> None:
        self.type_code = type_code(box_type)
        self.content = content
        self.version_flags = version_flags

    @classmethod
    def new_leaf(cls, box_type: str, version_flags: VersionFlags | None = None) -> "Box":
        return cls(box_type, Leaf(), version_flags)

    @classmethod
    def new_internal(cls, box_type: str, version_flags: VersionFlags | None = None) -> "Box":
        return cls(box_type, Internal(), version_flags)

    @property
    def type(self) -> str:
        return struct.pack(">I", self.type_code).decode("ascii")

    @property
    def is_leaf(self) -> bool:
        return isinstance(self.content, Leaf)

    @property
    def payload(self) -> bytes | None:
        return self.content.payload if isinstance(self.content, Leaf) else None

    @property
    def children(self) -> tuple["Box", ...]:
        return tuple(self.content.children) if isinstance(self.content, Internal) else ()

    @property
    def header_size(self) -> int:
        return BOX_HEADER_SIZE + (FULL_BOX_HEADER_SIZE if self.version_flags is not None else 0)

    @property
    def size(self) -> int:
        if isinstance(self.content, Leaf):
            return self.header_size + len(self.content.payload)
        return self.header_size + sum(child.size for child in self.content.children)

    def set_payload(self, payload: bytes | bytearray) -> None:
        """Make this box a leaf carrying ``payload``."""
        if isinstance(self.content, Internal) and self.content.children:
            logger.info("set_payload() on '%s' which already has children", self.type)
            raise InvariantError(f"Box '{self.type}' already has children")
        if not payload:
            logger.info("set_payload() on '%s' with empty payload", self.type)
            raise InvariantError(f"Box '{self.type}' payload must not be empty")
        self.content = Leaf(bytes(payload))

    def add_child(self, child: "Box") -> None:
        """Append ``child``; insertion order is serialization order."""
        if child is None:
            raise InvariantError(f"Cannot add a missing child to box '{self.type}'")
        if isinstance(self.content, Leaf):
            if self.content.payload:
                logger.info("add_child() on '%s' which already has a payload", self.type)
                raise InvariantError(f"Box '{self.type}' already has a payload")
            self.content = Internal()
        self.content.children.append(child)

    def find(self, path: str) -> "Box | None":
        """
        Find a descendant by dot-separated type path, e.g. ``"trak.mdia.minf"``.

        The first child matching each path component is followed.
        """
        if isinstance(self.content, Leaf):
            return None
        head, _, rest = path.partition(".")
        for child in self.content.children:
            if child.type == head:
                return child.find(rest) if rest else child
        return None

    def write_to(self, writer: ByteWriter) -> None:
        writer.write_u32(self.size)
        writer.write_u32(self.type_code)
        if self.version_flags is not None:
            writer.write_u8(self.version_flags.version)
            writer.write_u24(self.version_flags.flags)
        if isinstance(self.content, Leaf):
            writer.write(self.content.payload)
        else:
            for child in self.content.children:
                child.write_to(writer)

    def serialize(self) -> bytes:
        writer = ByteWriter()
        self.write_to(writer)
        return writer.getvalue()

    def to_hex(self) -> str:
        """Hex dump of the serialized box."""
        return format_hex(self.serialize())

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        if isinstance(self.content, Leaf):
            shape = f"payload={len(self.content.payload)} bytes"
        else:
            shape = f"children={[child.type for child in self.content.children]}"
        return f"Box(type={self.type!r}, size={self.size}, {shape})"
