"""
M4A header builder for a single AAC-LC audio track.

File layout produced by build_header():
    ftyp | moov (mvhd + trak) | mdat header

The raw AAC frames must be written immediately after the returned bytes,
in the same order and with the same sizes as the frame size table. The
whole stream is described as one chunk whose offset is the header length.

Since the chunk offset in stco depends on the size of moov, which
contains stco, the header is assembled in four steps:
1. Build the full box tree with a zero chunk offset
2. Measure ftyp + moov + mdat header
3. Patch the stco offset and the mdat size
4. Emit the bytes
"""

import logging
import time
from dataclasses import dataclass

from pydantic import ValidationError

from m4a_muxer.const import (
    MOVIE_TIMESCALE,
    MP4_EPOCH_OFFSET,
    SAMPLES_PER_FRAME,
    STCO_PATH,
    UINT32_MAX,
)
from m4a_muxer.errors import InvalidInputError, InvariantError
from m4a_muxer.muxer.box import BOX_HEADER_SIZE, Box, VersionFlags, format_hex
from m4a_muxer.muxer.esds import build_es_descriptor, sampling_frequency_index
from m4a_muxer.schemas import HeaderRequest
from m4a_muxer.utils.byte_writer import ByteWriter

logger = logging.getLogger(__name__)

# 3x3 transformation matrix in 16.16 / 2.30 fixed point
UNITY_MATRIX = (0x00010000, 0, 0, 0, 0x00010000, 0, 0, 0, 0x40000000)

TRACK_ID = 1
NEXT_TRACK_ID = 2
# track_enabled | track_in_movie | track_in_preview
TKHD_FLAGS = 0x000007
# dref entry flag: media data is in the same file
URL_SELF_CONTAINED = 0x000001

HANDLER_TYPE = b"soun"
HANDLER_NAME = b"SoundHandle\x00"


# =============================================================================
# Derived stream quantities
# =============================================================================


@dataclass
class StreamLayout:
    """Everything the header needs to know about the AAC stream."""

    sample_rate: int
    channel_count: int
    frame_sizes: list[int]
    bitrate: int
    frequency_index: int
    timestamp: int  # Seconds since 1904-01-01, used for creation and modification time

    @classmethod
    def from_request(cls, request: HeaderRequest, unix_time: float | None = None) -> "StreamLayout":
        if unix_time is None:
            unix_time = time.time()
        return cls(
            sample_rate=request.sample_rate,
            channel_count=request.channel_count,
            frame_sizes=list(request.frame_sizes),
            bitrate=request.bitrate,
            frequency_index=sampling_frequency_index(request.sample_rate),
            timestamp=mp4_timestamp(unix_time),
        )

    @property
    def frame_count(self) -> int:
        return len(self.frame_sizes)

    @property
    def max_frame_size(self) -> int:
        return max(self.frame_sizes)

    @property
    def total_stream_size(self) -> int:
        return sum(self.frame_sizes)

    @property
    def sample_count(self) -> int:
        # The priming frame carries no samples.
        return SAMPLES_PER_FRAME * (self.frame_count - 1)

    @property
    def duration_ms(self) -> int:
        return ceil_div(self.sample_count * MOVIE_TIMESCALE, self.sample_rate)


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def mp4_timestamp(unix_time: float) -> int:
    """Convert Unix time to seconds since 1904-01-01, wrapped to 32 bits."""
    return (int(unix_time) + MP4_EPOCH_OFFSET) & UINT32_MAX


# =============================================================================
# Box helpers
# =============================================================================


def _leaf(box_type: str, payload: bytes, version_flags: VersionFlags | None = None) -> Box:
    box = Box.new_leaf(box_type, version_flags)
    box.set_payload(payload)
    return box


def _full_leaf(box_type: str, payload: bytes, flags: int = 0) -> Box:
    return _leaf(box_type, payload, VersionFlags(0, flags))


def _internal(box_type: str, *children: Box) -> Box:
    box = Box.new_internal(box_type)
    for child in children:
        box.add_child(child)
    return box


def _write_matrix(writer: ByteWriter) -> None:
    for value in UNITY_MATRIX:
        writer.write_u32(value)


# =============================================================================
# ftyp / mdat
# =============================================================================


def build_ftyp() -> Box:
    """Build the File Type box for an .m4a file."""
    writer = ByteWriter()
    writer.write(b"M4A ")  # major brand
    writer.write_u32(0)  # minor version
    writer.write(b"M4A " + b"mp42" + b"isom")  # compatible brands
    return _leaf("ftyp", writer.getvalue())


def build_mdat() -> Box:
    """Build an empty mdat box; the AAC frames follow it directly on disk."""
    return Box.new_leaf("mdat")


# =============================================================================
# moov box and children
# =============================================================================


def build_mvhd(layout: StreamLayout) -> Box:
    """Build Movie Header box (mvhd), version 0, timescale in milliseconds."""
    writer = ByteWriter()
    writer.write_u32(layout.timestamp)  # creation_time
    writer.write_u32(layout.timestamp)  # modification_time
    writer.write_u32(MOVIE_TIMESCALE)
    writer.write_u32(layout.duration_ms)
    writer.write_u32(0x00010000)  # rate = 1.0
    writer.write_u16(0x0100)  # volume = 1.0
    writer.zeros(10)  # reserved
    _write_matrix(writer)
    writer.zeros(24)  # pre_defined
    writer.write_u32(NEXT_TRACK_ID)
    return _full_leaf("mvhd", writer.getvalue())


def build_tkhd(layout: StreamLayout) -> Box:
    """Build Track Header box (tkhd), version 0."""
    writer = ByteWriter()
    writer.write_u32(layout.timestamp)  # creation_time
    writer.write_u32(layout.timestamp)  # modification_time
    writer.write_u32(TRACK_ID)
    writer.zeros(4)  # reserved
    writer.write_u32(layout.duration_ms)
    writer.zeros(8)  # reserved
    writer.write_u16(0)  # layer
    writer.write_u16(0)  # alternate_group
    writer.write_u16(0x0100)  # volume = 1.0
    writer.zeros(2)  # reserved
    _write_matrix(writer)
    writer.write_u32(0)  # width
    writer.write_u32(0)  # height
    return _full_leaf("tkhd", writer.getvalue(), TKHD_FLAGS)


def build_mdhd(layout: StreamLayout) -> Box:
    """Build Media Header box (mdhd); timescale is the sample rate so duration is in samples."""
    writer = ByteWriter()
    writer.write_u32(layout.timestamp)  # creation_time
    writer.write_u32(layout.timestamp)  # modification_time
    writer.write_u32(layout.sample_rate)
    writer.write_u32(layout.sample_count)
    writer.write_u16(0)  # language
    writer.write_u16(0)  # pre_defined
    return _full_leaf("mdhd", writer.getvalue())


def build_hdlr() -> Box:
    """Build Handler Reference box (hdlr) for a sound track."""
    writer = ByteWriter()
    writer.zeros(4)  # pre_defined
    writer.write(HANDLER_TYPE)
    writer.zeros(12)  # reserved
    writer.write(HANDLER_NAME)
    return _full_leaf("hdlr", writer.getvalue())


def build_smhd() -> Box:
    """Build Sound Media Header box (smhd)."""
    writer = ByteWriter()
    writer.write_u16(0)  # balance (center)
    writer.zeros(2)  # reserved
    return _full_leaf("smhd", writer.getvalue())


def build_dinf() -> Box:
    """Build Data Information box (dinf) with a self-contained URL entry."""
    url = Box.new_leaf("url ", VersionFlags(0, URL_SELF_CONTAINED))
    writer = ByteWriter()
    writer.write_u32(1)  # entry_count
    writer.write(url.serialize())
    return _internal("dinf", _full_leaf("dref", writer.getvalue()))


# =============================================================================
# Sample table boxes (stbl)
# =============================================================================


def build_esds(layout: StreamLayout) -> Box:
    """Build an Elementary Stream Descriptor box (esds) for AAC-LC."""
    descriptor = build_es_descriptor(
        layout.frequency_index, layout.channel_count, layout.max_frame_size, layout.bitrate
    )
    return _full_leaf("esds", descriptor)


def build_mp4a(layout: StreamLayout) -> Box:
    """Build an mp4a AudioSampleEntry with esds box."""
    writer = ByteWriter()
    writer.zeros(6)  # reserved
    writer.write_u16(1)  # data_reference_index
    writer.zeros(8)  # reserved
    writer.write_u16(layout.channel_count)
    writer.write_u16(16)  # sample_size (16-bit)
    writer.write_u16(0)  # pre_defined
    writer.write_u16(0)  # reserved
    # sample_rate as 16.16 fixed point, integer part truncated to 16 bits
    writer.write_u16(layout.sample_rate & 0xFFFF)
    writer.write_u16(0)
    writer.write(build_esds(layout).serialize())
    return _leaf("mp4a", writer.getvalue())


def build_stsd(layout: StreamLayout) -> Box:
    """Build Sample Description box (stsd) with a single mp4a entry."""
    writer = ByteWriter()
    writer.write_u32(1)  # entry_count
    writer.write(build_mp4a(layout).serialize())
    return _full_leaf("stsd", writer.getvalue())


def build_stts(layout: StreamLayout) -> Box:
    """
    Build Time-to-Sample box (stts).

    Two runs: the priming frame with no duration, then every audio frame
    lasting 1024 samples (media timescale is the sample rate).
    """
    writer = ByteWriter()
    writer.write_u32(2)  # entry_count
    writer.write_u32(1).write_u32(0)
    writer.write_u32(layout.frame_count - 1).write_u32(SAMPLES_PER_FRAME)
    return _full_leaf("stts", writer.getvalue())


def build_stsc(layout: StreamLayout) -> Box:
    """Build Sample-to-Chunk box (stsc): all frames in a single chunk."""
    writer = ByteWriter()
    writer.write_u32(1)  # entry_count
    writer.write_u32(1)  # first_chunk
    writer.write_u32(layout.frame_count)  # samples_per_chunk
    writer.write_u32(1)  # sample_description_index
    return _full_leaf("stsc", writer.getvalue())


def build_stsz(layout: StreamLayout) -> Box:
    """Build Sample Size box (stsz) with per-frame sizes."""
    writer = ByteWriter()
    writer.write_u32(0)  # sample_size=0 means sizes vary
    writer.write_u32(layout.frame_count)
    for size in layout.frame_sizes:
        writer.write_u32(size)
    return _full_leaf("stsz", writer.getvalue())


def build_stco() -> Box:
    """Build Chunk Offset box (stco) with one placeholder offset, patched once the header size is known."""
    writer = ByteWriter()
    writer.write_u32(1)  # entry_count
    writer.write_u32(0)  # chunk_offset
    return _full_leaf("stco", writer.getvalue())


def build_stbl(layout: StreamLayout) -> Box:
    return _internal(
        "stbl",
        build_stsd(layout),
        build_stts(layout),
        build_stsc(layout),
        build_stsz(layout),
        build_stco(),
    )


def build_trak(layout: StreamLayout) -> Box:
    minf = _internal("minf", build_smhd(), build_dinf(), build_stbl(layout))
    mdia = _internal("mdia", build_mdhd(layout), build_hdlr(), minf)
    return _internal("trak", build_tkhd(layout), mdia)


def build_moov(layout: StreamLayout) -> Box:
    return _internal("moov", build_mvhd(layout), build_trak(layout))


# =============================================================================
# Late patching and public entry point
# =============================================================================


def patch_chunk_offset(moov: Box, chunk_offset: int) -> None:
    """Overwrite the last offset in moov's stco with ``chunk_offset``."""
    stco = moov.find(STCO_PATH)
    if stco is None or stco.payload is None:
        logger.error("[m4a_header] stco box not found at moov.%s", STCO_PATH)
        raise InvariantError(f"Chunk offset box missing at moov.{STCO_PATH}")
    writer = ByteWriter().write(stco.payload)
    writer.patch_u32(len(writer) - 4, chunk_offset)
    stco.set_payload(writer.getvalue())


def _validate(sample_rate: int, channel_count: int, frame_sizes: list[int], bitrate: int) -> HeaderRequest:
    try:
        request = HeaderRequest(
            sample_rate=sample_rate,
            channel_count=channel_count,
            frame_sizes=frame_sizes,
            bitrate=bitrate,
        )
    except ValidationError as e:
        raise InvalidInputError(f"Invalid header parameters: {e}") from e
    if BOX_HEADER_SIZE + request.total_stream_size > UINT32_MAX:
        raise InvalidInputError(f"AAC stream of {request.total_stream_size} bytes does not fit a 32-bit mdat box")
    sample_count = SAMPLES_PER_FRAME * (len(request.frame_sizes) - 1)
    if sample_count > UINT32_MAX:
        raise InvalidInputError(f"{sample_count} samples do not fit the 32-bit mdhd duration")
    duration_ms = ceil_div(sample_count * MOVIE_TIMESCALE, request.sample_rate)
    if duration_ms > UINT32_MAX:
        raise InvalidInputError(f"Duration of {duration_ms} ms does not fit the 32-bit mvhd duration")
    return request


def build_header(
    sample_rate: int,
    channel_count: int,
    frame_sizes: list[int],
    bitrate: int,
    unix_time: float | None = None,
) -> bytes:
    """
    Build the complete .m4a header for an AAC-LC stream.

    Args:
        sample_rate: Sampling frequency in Hz. Rates missing from the AAC
            frequency table are encoded as 44100 Hz.
        channel_count: Number of channels.
        frame_sizes: Size in bytes of every AAC frame. The first entry
            must be the 2-byte priming frame.
        bitrate: Bitrate in bits/s, written as max and average bitrate.
        unix_time: Creation time; defaults to now.

    Returns:
        ftyp + moov + mdat header. Its length is also the chunk offset.

    Raises:
        InvalidInputError: If the parameters cannot describe a stream.
    """
    request = _validate(sample_rate, channel_count, frame_sizes, bitrate)
    layout = StreamLayout.from_request(request, unix_time)

    ftyp = build_ftyp()
    moov = build_moov(layout)
    mdat = build_mdat()

    header_size = ftyp.size + moov.size + mdat.size
    patch_chunk_offset(moov, header_size)

    writer = ByteWriter()
    for box in (ftyp, moov, mdat):
        box.write_to(writer)
    # mdat carries no payload itself; its size covers the frames that follow.
    writer.patch_u32(header_size - mdat.size, BOX_HEADER_SIZE + layout.total_stream_size)

    logger.debug(
        "[m4a_header] Built header: ftyp=%d moov=%d total=%d frames=%d samples=%d duration=%dms",
        ftyp.size,
        moov.size,
        header_size,
        layout.frame_count,
        layout.sample_count,
        layout.duration_ms,
    )
    return writer.getvalue()

