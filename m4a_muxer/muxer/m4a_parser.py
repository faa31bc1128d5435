"""
Read-side helpers for inspecting headers produced by m4a_header.

Provides:
- Box navigation over raw bytes (read_box_header, iter_boxes, find_box)
- Sample table parsers (stts, stsc, stsz, stco)
- AudioSpecificConfig decoding from an esds payload
- describe_header: a summary of a complete header

The parsers are the inverse of the builder functions in m4a_header.py.
"""

import logging
import struct
from dataclasses import dataclass, field

from m4a_muxer.const import SAMPLING_FREQUENCIES
from m4a_muxer.errors import InvalidInputError

logger = logging.getLogger(__name__)

_BOX_HEADER_SIZE = 8
_FULL_BOX_HEADER_SIZE = 4

# mp4a AudioSampleEntry fields before the child boxes
_AUDIO_SAMPLE_ENTRY_SIZE = 28


# =============================================================================
# Box navigation
# =============================================================================


def read_box_header(data: bytes, offset: int) -> tuple[bytes, int] | None:
    """
    Read a box header at the given offset.

    Returns:
        (box_type, total_box_size) or None if not enough data.
    """
    if offset + _BOX_HEADER_SIZE > len(data):
        return None
    size, box_type = struct.unpack_from(">I4s", data, offset)
    return box_type, size


def iter_boxes(data: bytes):
    """
    Iterate over sibling boxes.

    Yields:
        (box_type, declared_size, body_bytes). The body is truncated to the
        available data, which matters for the trailing mdat of a header.
    """
    offset = 0
    while offset < len(data):
        result = read_box_header(data, offset)
        if result is None:
            break
        box_type, size = result
        if size < _BOX_HEADER_SIZE:
            logger.warning("Box '%s' at %d declares invalid size %d", box_type, offset, size)
            break
        yield box_type, size, data[offset + _BOX_HEADER_SIZE : offset + size]
        offset += size


def find_box(data: bytes, target: bytes) -> bytes | None:
    """Find a box by type and return its body (data after header)."""
    for box_type, _, body in iter_boxes(data):
        if box_type == target:
            return body
    return None


def find_nested_box(data: bytes, *path: bytes) -> bytes | None:
    """Walk a box hierarchy: find_nested_box(data, b"moov", b"trak") etc."""
    current = data
    for box_name in path:
        found = find_box(current, box_name)
        if found is None:
            return None
        current = found
    return current


# =============================================================================
# Full box parsers
# =============================================================================


def parse_full_box_header(data: bytes) -> tuple[int, int]:
    """Parse version and flags of a full box body."""
    if len(data) < _FULL_BOX_HEADER_SIZE:
        return 0, 0
    return data[0], (data[1] << 16) | (data[2] << 8) | data[3]


def parse_mvhd(data: bytes) -> tuple[int, int, int]:
    """
    Parse Movie Header box (mvhd), version 0.

    Returns:
        (timescale, duration, next_track_id)
    """
    if len(data) < 100:
        return 0, 0, 0
    timescale, duration = struct.unpack_from(">II", data, 12)
    next_track_id = struct.unpack_from(">I", data, 96)[0]
    return timescale, duration, next_track_id


def parse_mdhd(data: bytes) -> tuple[int, int]:
    """
    Parse Media Header box (mdhd), version 0.

    Returns:
        (timescale, duration) in media timescale units.
    """
    if len(data) < 20:
        return 0, 0
    return struct.unpack_from(">II", data, 12)


def _parse_entries(data: bytes, fields: int) -> list[tuple[int, ...]]:
    if len(data) < 8:
        return []
    entry_count = struct.unpack_from(">I", data, _FULL_BOX_HEADER_SIZE)[0]
    entry_size = 4 * fields
    pos = _FULL_BOX_HEADER_SIZE + 4
    if len(data) < pos + entry_count * entry_size:
        return []
    fmt = ">" + "I" * fields
    return [struct.unpack_from(fmt, data, pos + i * entry_size) for i in range(entry_count)]


def parse_stts(data: bytes) -> list[tuple[int, int]]:
    """Parse Time-to-Sample box (stts) into (sample_count, sample_delta) entries."""
    return [(count, delta) for count, delta in _parse_entries(data, 2)]


def parse_stsc(data: bytes) -> list[tuple[int, int, int]]:
    """Parse Sample-to-Chunk box (stsc) into (first_chunk, samples_per_chunk, sample_desc_index) entries."""
    return [(first, spc, sdi) for first, spc, sdi in _parse_entries(data, 3)]


def parse_stco(data: bytes) -> list[int]:
    """Parse Chunk Offset box (stco) - 32-bit offsets."""
    return [offset for (offset,) in _parse_entries(data, 1)]


def parse_stsz(data: bytes) -> tuple[int, list[int]]:
    """
    Parse Sample Size box (stsz).

    Returns:
        (uniform_size, sizes_list). sizes_list is empty when uniform_size > 0.
    """
    if len(data) < 12:
        return 0, []
    sample_size, sample_count = struct.unpack_from(">II", data, _FULL_BOX_HEADER_SIZE)
    if sample_size > 0:
        return sample_size, []
    pos = _FULL_BOX_HEADER_SIZE + 8
    if len(data) < pos + sample_count * 4:
        return 0, []
    return 0, list(struct.unpack_from(f">{sample_count}I", data, pos))


# =============================================================================
# Sample entry / descriptors
# =============================================================================


@dataclass
class AudioSpecificConfig:
    object_type: int
    frequency_index: int
    channel_config: int

    @property
    def sample_rate(self) -> int:
        if self.frequency_index < len(SAMPLING_FREQUENCIES):
            return SAMPLING_FREQUENCIES[self.frequency_index]
        return 0


@dataclass
class DecoderConfig:
    object_type_indication: int
    stream_type: int
    buffer_size: int
    max_bitrate: int
    avg_bitrate: int
    audio_specific_config: AudioSpecificConfig


def parse_audio_specific_config(asc: bytes) -> AudioSpecificConfig:
    """Decode the first two bytes of an AudioSpecificConfig."""
    if len(asc) < 2:
        raise InvalidInputError("AudioSpecificConfig needs at least 2 bytes")
    value = (asc[0] << 8) | asc[1]
    return AudioSpecificConfig(
        object_type=(value >> 11) & 0x1F,
        frequency_index=(value >> 7) & 0x0F,
        channel_config=(value >> 3) & 0x0F,
    )


def _read_descriptor(data: bytes, pos: int) -> tuple[int, int, int]:
    """Read a descriptor tag and expandable length; returns (tag, length, body_offset)."""
    tag = data[pos]
    pos += 1
    length = 0
    for _ in range(4):
        byte = data[pos]
        pos += 1
        length = (length << 7) | (byte & 0x7F)
        if not byte & 0x80:
            break
    return tag, length, pos


def parse_esds(data: bytes) -> DecoderConfig:
    """Parse an esds box body (version/flags + ES_Descriptor)."""
    try:
        tag, _, pos = _read_descriptor(data, _FULL_BOX_HEADER_SIZE)
        if tag != 0x03:
            raise InvalidInputError(f"Expected ES_Descriptor tag 0x03, got 0x{tag:02X}")
        pos += 3  # ES_ID + flags
        tag, _, pos = _read_descriptor(data, pos)
        if tag != 0x04:
            raise InvalidInputError(f"Expected DecoderConfigDescriptor tag 0x04, got 0x{tag:02X}")
        object_type, stream_type = data[pos], data[pos + 1]
        buffer_size = int.from_bytes(data[pos + 2 : pos + 5], "big")
        max_bitrate, avg_bitrate = struct.unpack_from(">II", data, pos + 5)
        tag, length, pos = _read_descriptor(data, pos + 13)
        if tag != 0x05:
            raise InvalidInputError(f"Expected DecoderSpecificInfo tag 0x05, got 0x{tag:02X}")
        asc = parse_audio_specific_config(data[pos : pos + length])
    except (IndexError, struct.error) as e:
        raise InvalidInputError("Truncated esds box") from e
    return DecoderConfig(object_type, stream_type, buffer_size, max_bitrate, avg_bitrate, asc)


@dataclass
class AudioSampleEntry:
    channel_count: int
    sample_size: int
    sample_rate: int  # Integer part of the 16.16 field
    decoder_config: DecoderConfig


def parse_stsd_audio(data: bytes) -> AudioSampleEntry:
    """Parse an stsd body holding one mp4a entry."""
    body = find_box(data[_FULL_BOX_HEADER_SIZE + 4 :], b"mp4a")
    if body is None or len(body) < _AUDIO_SAMPLE_ENTRY_SIZE:
        raise InvalidInputError("stsd does not contain an mp4a entry")
    channel_count, sample_size = struct.unpack_from(">HH", body, 16)
    sample_rate = struct.unpack_from(">H", body, 24)[0]
    esds = find_box(body[_AUDIO_SAMPLE_ENTRY_SIZE:], b"esds")
    if esds is None:
        raise InvalidInputError("mp4a entry has no esds box")
    return AudioSampleEntry(channel_count, sample_size, sample_rate, parse_esds(esds))


# =============================================================================
# Whole header summary
# =============================================================================


@dataclass
class HeaderInfo:
    """Summary of an m4a header, as written by build_header()."""

    header_size: int = 0
    movie_timescale: int = 0
    duration_ms: int = 0
    next_track_id: int = 0
    media_timescale: int = 0
    sample_count: int = 0
    time_to_sample: list[tuple[int, int]] = field(default_factory=list)
    sample_to_chunk: list[tuple[int, int, int]] = field(default_factory=list)
    frame_sizes: list[int] = field(default_factory=list)
    chunk_offsets: list[int] = field(default_factory=list)
    mdat_size: int = 0
    sample_entry: AudioSampleEntry | None = None


def describe_header(header: bytes) -> HeaderInfo:
    """
    Parse a header produced by build_header() back into its key fields.

    Raises:
        InvalidInputError: If a required box is missing.
    """
    moov = find_box(header, b"moov")
    if moov is None:
        raise InvalidInputError("Header has no moov box")
    stbl = find_nested_box(moov, b"trak", b"mdia", b"minf", b"stbl")
    mvhd = find_box(moov, b"mvhd")
    mdhd = find_nested_box(moov, b"trak", b"mdia", b"mdhd")
    if stbl is None or mvhd is None or mdhd is None:
        raise InvalidInputError("Header is missing mvhd, mdhd or stbl")

    info = HeaderInfo(header_size=len(header))
    info.movie_timescale, info.duration_ms, info.next_track_id = parse_mvhd(mvhd)
    info.media_timescale, info.sample_count = parse_mdhd(mdhd)
    info.time_to_sample = parse_stts(find_box(stbl, b"stts") or b"")
    info.sample_to_chunk = parse_stsc(find_box(stbl, b"stsc") or b"")
    _, info.frame_sizes = parse_stsz(find_box(stbl, b"stsz") or b"")
    info.chunk_offsets = parse_stco(find_box(stbl, b"stco") or b"")
    stsd = find_box(stbl, b"stsd")
    if stsd is not None:
        info.sample_entry = parse_stsd_audio(stsd)
    for box_type, size, _ in iter_boxes(header):
        if box_type == b"mdat":
            info.mdat_size = size
    return info
