import struct

import pytest

from m4a_muxer.const import MP4_EPOCH_OFFSET
from m4a_muxer.errors import InvalidInputError, InvariantError
from m4a_muxer.muxer.box import Box
from m4a_muxer.muxer.m4a_header import (
    StreamLayout,
    build_ftyp,
    build_header,
    build_moov,
    format_hex,
    mp4_timestamp,
    patch_chunk_offset,
)
from m4a_muxer.muxer.m4a_parser import describe_header, find_box, find_nested_box, iter_boxes, parse_full_box_header
from m4a_muxer.schemas import HeaderRequest

from conftest import FIXED_UNIX_TIME


def _layout(sample_rate: int = 44100, frame_sizes: list[int] | None = None) -> StreamLayout:
    request = HeaderRequest(
        sample_rate=sample_rate,
        channel_count=2,
        frame_sizes=frame_sizes or [2, 200, 205, 198],
        bitrate=128000,
    )
    return StreamLayout.from_request(request, unix_time=FIXED_UNIX_TIME)


def _top_level(header: bytes) -> list[tuple[bytes, int]]:
    return [(box_type, size) for box_type, size, _ in iter_boxes(header)]


def test_stereo_scenario(stereo_header):
    info = describe_header(stereo_header)

    assert info.sample_count == 3072
    assert info.media_timescale == 44100
    assert info.movie_timescale == 1000
    assert info.duration_ms == 70
    assert info.next_track_id == 2
    assert info.frame_sizes == [2, 200, 205, 198]
    assert info.time_to_sample == [(1, 0), (3, 1024)]
    assert info.sample_to_chunk == [(1, 4, 1)]
    assert info.chunk_offsets == [len(stereo_header)]
    assert info.mdat_size == 8 + 605


def test_stereo_scenario_layout(stereo_header):
    assert _top_level(stereo_header) == [(b"ftyp", 28), (b"moov", 575), (b"mdat", 613)]
    assert len(stereo_header) == 611


def test_chunk_offset_is_last_word_of_stco(stereo_header):
    stco = find_nested_box(stereo_header, b"moov", b"trak", b"mdia", b"minf", b"stbl", b"stco")
    assert struct.unpack(">I", stco[-4:])[0] == len(stereo_header)


def test_header_is_ftyp_moov_then_mdat_header(stereo_header):
    assert stereo_header[4:12] == b"ftypM4A "
    assert find_box(stereo_header, b"ftyp") == b"M4A \x00\x00\x00\x00M4A mp42isom"
    assert stereo_header[-4:] == b"mdat"


@pytest.mark.parametrize(
    "frame_sizes",
    [
        [2, 1],
        [2, 371, 371, 371, 371, 371],
        [2] + [300 + (i * 37) % 200 for i in range(500)],
    ],
)
def test_offset_and_mdat_size_follow_frame_table(frame_sizes):
    header = build_header(48000, 1, frame_sizes, 96000, unix_time=FIXED_UNIX_TIME)
    info = describe_header(header)
    ftyp_size, moov_size = [size for _, size in _top_level(header)[:2]]

    assert info.chunk_offsets == [ftyp_size + moov_size + 8]
    assert info.chunk_offsets == [len(header)]
    assert info.mdat_size == 8 + sum(frame_sizes)
    assert info.frame_sizes == frame_sizes
    assert len(header) == 595 + 4 * len(frame_sizes)


@pytest.mark.parametrize("sample_rate", [7350, 8000, 11025, 22050, 44100, 48000, 88200, 96000, 50000])
@pytest.mark.parametrize("frame_count", [2, 3, 44, 1001])
def test_duration_never_under_reports(sample_rate, frame_count):
    layout = _layout(sample_rate, [2] + [100] * (frame_count - 1))
    assert layout.duration_ms * sample_rate >= layout.sample_count * 1000
    assert (layout.duration_ms - 1) * sample_rate < layout.sample_count * 1000


def test_timestamps_use_1904_epoch():
    assert mp4_timestamp(0) == MP4_EPOCH_OFFSET == (66 * 365 + 16) * 86400 == 2082758400
    assert mp4_timestamp(1.9) == MP4_EPOCH_OFFSET + 1


def test_timestamps_written_to_headers(stereo_header):
    expected = struct.pack(">I", FIXED_UNIX_TIME + MP4_EPOCH_OFFSET) * 2
    moov = find_box(stereo_header, b"moov")
    for path in ([b"mvhd"], [b"trak", b"tkhd"], [b"trak", b"mdia", b"mdhd"]):
        body = find_nested_box(moov, *path)
        assert body[4:12] == expected


def test_track_header_flags(stereo_header):
    tkhd = find_nested_box(stereo_header, b"moov", b"trak", b"tkhd")
    assert parse_full_box_header(tkhd) == (0, 0x000007)
    assert struct.unpack_from(">I", tkhd, 12)[0] == 1  # track_ID
    assert struct.unpack_from(">I", tkhd, 20)[0] == 70  # duration in ms


def test_sound_handler(stereo_header):
    hdlr = find_nested_box(stereo_header, b"moov", b"trak", b"mdia", b"hdlr")
    assert hdlr[8:12] == b"soun"
    assert hdlr[24:] == b"SoundHandle\x00"


def test_data_reference_is_self_contained(stereo_header):
    dref = find_nested_box(stereo_header, b"moov", b"trak", b"mdia", b"minf", b"dinf", b"dref")
    assert dref == b"\x00\x00\x00\x00" + b"\x00\x00\x00\x01" + b"\x00\x00\x00\x0curl \x00\x00\x00\x01"


def test_audio_sample_entry(stereo_header):
    entry = describe_header(stereo_header).sample_entry
    assert entry.channel_count == 2
    assert entry.sample_size == 16
    assert entry.sample_rate == 44100
    config = entry.decoder_config
    assert config.object_type_indication == 0x40
    assert config.stream_type == 0x15
    assert config.buffer_size == 0x300
    assert config.max_bitrate == config.avg_bitrate == 128000
    assert config.audio_specific_config.frequency_index == 4
    assert config.audio_specific_config.channel_config == 2


def test_unknown_sample_rate_is_encoded_as_44100():
    header = build_header(50000, 2, [2, 10, 10], 64000, unix_time=FIXED_UNIX_TIME)
    info = describe_header(header)
    assert info.media_timescale == 50000
    assert info.sample_entry.sample_rate == 50000
    assert info.sample_entry.decoder_config.audio_specific_config.frequency_index == 4


def test_strict_mode_rejects_unknown_sample_rate(strict_sample_rate):
    with pytest.raises(InvalidInputError):
        build_header(50000, 2, [2, 10, 10], 64000)


def test_large_frames_grow_decoder_buffer():
    header = build_header(44100, 2, [2, 600, 1500, 700], 320000, unix_time=FIXED_UNIX_TIME)
    assert describe_header(header).sample_entry.decoder_config.buffer_size == 3072


@pytest.mark.parametrize(
    "frame_sizes",
    [
        [3, 1, 1],
        [2],
        [],
        None,
        [2, -1],
        [2, 0x100000000],
    ],
)
def test_invalid_frame_table_is_rejected(frame_sizes):
    with pytest.raises(InvalidInputError):
        build_header(44100, 2, frame_sizes, 128000)


@pytest.mark.parametrize(
    "sample_rate, channel_count, bitrate",
    [
        (0, 2, 128000),
        (-44100, 2, 128000),
        (44100, 0, 128000),
        (44100, 16, 128000),
        (44100, 2, -1),
    ],
)
def test_invalid_stream_parameters_are_rejected(sample_rate, channel_count, bitrate):
    with pytest.raises(InvalidInputError):
        build_header(sample_rate, channel_count, [2, 100], bitrate)


def test_stream_too_large_for_mdat_is_rejected():
    with pytest.raises(InvalidInputError):
        build_header(44100, 2, [2, 0xFFFFFFFF], 128000)


def test_sample_rate_must_fit_32_bits():
    with pytest.raises(InvalidInputError):
        build_header(2**32, 2, [2, 100], 128000)


def test_duration_must_fit_32_bits():
    # 5000 frames at 1 Hz last 5_120_000_000 ms
    with pytest.raises(InvalidInputError):
        build_header(1, 2, [2] + [1] * 5000, 0)


def test_sample_count_must_fit_32_bits():
    # 4194304 audio frames hold 2**32 samples
    with pytest.raises(InvalidInputError):
        build_header(96000, 2, [2] + [0] * 4194304, 128000)


def test_header_is_reproducible_for_fixed_time(stereo_frame_sizes, stereo_header):
    again = build_header(44100, 2, stereo_frame_sizes, 128000, unix_time=FIXED_UNIX_TIME)
    assert again == stereo_header


def test_moov_tree_shape():
    moov = build_moov(_layout())
    stbl = moov.find("trak.mdia.minf.stbl")
    assert [box.type for box in moov.children] == ["mvhd", "trak"]
    assert [box.type for box in moov.find("trak.mdia").children] == ["mdhd", "hdlr", "minf"]
    assert [box.type for box in moov.find("trak.mdia.minf").children] == ["smhd", "dinf", "stbl"]
    assert [box.type for box in stbl.children] == ["stsd", "stts", "stsc", "stsz", "stco"]
    assert moov.find("trak.mdia.minf.stbl.stco").payload == b"\x00\x00\x00\x01\x00\x00\x00\x00"


def test_patch_chunk_offset_keeps_size():
    moov = build_moov(_layout())
    size = moov.size
    patch_chunk_offset(moov, 0x01020304)
    assert moov.size == size
    assert moov.find("trak.mdia.minf.stbl.stco").payload[-4:] == b"\x01\x02\x03\x04"


def test_patch_chunk_offset_requires_stco():
    moov = Box.new_internal("moov")
    moov.add_child(build_ftyp())
    with pytest.raises(InvariantError):
        patch_chunk_offset(moov, 100)


def test_format_hex():
    data = bytes(range(36))
    assert format_hex(data) == (
        "00010203 04050607 08090A0B 0C0D0E0F 10111213 14151617 18191A1B 1C1D1E1F\n20212223"
    )
    assert format_hex(b"\xab\xcd\xef") == "ABCDEF"
