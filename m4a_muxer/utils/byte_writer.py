"""
Big-endian binary writer used to lay out box payloads.

Every multi-byte field in an MP4 header is big-endian; the writer keeps
the packing in one place so payload builders never shift bytes by hand.
"""

import struct


class ByteWriter:
    def __init__(self) -> None:
        self.data = bytearray()

    def __len__(self) -> int:
        return len(self.data)

    def write(self, data: bytes | bytearray | memoryview) -> "ByteWriter":
        self.data.extend(data)
        return self

    def zeros(self, count: int) -> "ByteWriter":
        self.data.extend(b"\x00" * count)
        return self

    def write_u8(self, value: int) -> "ByteWriter":
        self.data.extend(struct.pack(">B", value))
        return self

    def write_u16(self, value: int) -> "ByteWriter":
        self.data.extend(struct.pack(">H", value))
        return self

    def write_u24(self, value: int) -> "ByteWriter":
        if not 0 <= value <= 0xFFFFFF:
            raise struct.error(f"u24 out of range: {value}")
        self.data.extend(struct.pack(">I", value)[1:])
        return self

    def write_u32(self, value: int) -> "ByteWriter":
        self.data.extend(struct.pack(">I", value))
        return self

    def patch_u32(self, offset: int, value: int) -> None:
        """Overwrite four bytes at ``offset`` in place."""
        if offset < 0 or offset + 4 > len(self.data):
            raise IndexError(f"u32 patch at {offset} outside buffer of {len(self.data)} bytes")
        struct.pack_into(">I", self.data, offset, value)

    def getvalue(self) -> bytes:
        return bytes(self.data)
