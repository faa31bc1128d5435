"""
Elementary Stream Descriptor encoding for an AAC-LC audio track.

The descriptor is the payload of the ``esds`` box inside the ``mp4a``
sample entry (ISO/IEC 14496-1 section 7.2.6):

    ES_Descriptor (tag 0x03)
      DecoderConfigDescriptor (tag 0x04)
        objectTypeIndication, streamType, bufferSizeDB, maxBitrate, avgBitrate
        DecoderSpecificInfo (tag 0x05) = AudioSpecificConfig
      SLConfigDescriptor (tag 0x06)

All lengths are fixed, so each descriptor uses a single-byte length.
"""

import logging

from m4a_muxer.configs import settings
from m4a_muxer.const import FALLBACK_FREQUENCY_INDEX, SAMPLING_FREQUENCIES
from m4a_muxer.errors import InvalidInputError
from m4a_muxer.utils.byte_writer import ByteWriter

logger = logging.getLogger(__name__)

# tag=ES_Descriptor, length=25, ES_ID=0, flags=0
ES_DESCRIPTOR_TOP = bytes([0x03, 0x19, 0x00, 0x00, 0x00])
# tag=DecoderConfigDescriptor, length=17, objectType=Audio ISO/IEC 14496-3, streamType=AudioStream
DEC_CONFIG_DESCRIPTOR_TOP = bytes([0x04, 0x11, 0x40, 0x15])
# tag=DecoderSpecificInfo, length=2, AAC LC; frequency and channels are OR'd in
AUDIO_SPECIFIC_CONFIG_TEMPLATE = bytes([0x05, 0x02, 0x10, 0x00])
# tag=SLConfigDescriptor, length=1, predefined=2 (MP4 file)
SL_CONFIG_DESCRIPTOR = bytes([0x06, 0x01, 0x02])

MIN_DECODER_BUFFER_SIZE = 0x300
MAX_DECODER_BUFFER_SIZE = 0xFFFF00  # bufferSizeDB is 24 bits
DECODER_BUFFER_GRANULE = 0x100


def sampling_frequency_index(sample_rate: int) -> int:
    """
    Return the AudioSpecificConfig frequency index for ``sample_rate``.

    Unknown rates fall back to 44100 Hz unless ``strict_sample_rate`` is set.
    """
    try:
        return SAMPLING_FREQUENCIES.index(sample_rate)
    except ValueError:
        if settings.strict_sample_rate:
            raise InvalidInputError(f"Unsupported sample rate: {sample_rate} Hz") from None
        logger.info("Invalid sampling frequency %d Hz. Defaulting to 44100Hz", sample_rate)
        return FALLBACK_FREQUENCY_INDEX


def decoder_buffer_size(max_frame_size: int) -> int:
    """Smallest multiple of 256 that is at least 768 and holds two of the largest frame."""
    needed = max(MIN_DECODER_BUFFER_SIZE, 2 * max_frame_size)
    granules = -(-needed // DECODER_BUFFER_GRANULE)
    return min(granules * DECODER_BUFFER_GRANULE, MAX_DECODER_BUFFER_SIZE)


def build_audio_specific_config(frequency_index: int, channel_count: int) -> bytes:
    """Build the DecoderSpecificInfo descriptor carrying the AudioSpecificConfig."""
    asc = bytearray(AUDIO_SPECIFIC_CONFIG_TEMPLATE)
    asc[2] |= (frequency_index >> 1) & 0x07
    asc[3] |= ((frequency_index & 1) << 7) | ((channel_count & 0x0F) << 3)
    return bytes(asc)


def build_decoder_config_descriptor(
    max_frame_size: int, bitrate: int, frequency_index: int, channel_count: int
) -> bytes:
    writer = ByteWriter()
    writer.write(DEC_CONFIG_DESCRIPTOR_TOP)
    writer.write_u24(decoder_buffer_size(max_frame_size))
    writer.write_u32(bitrate)  # maxBitrate
    writer.write_u32(bitrate)  # avgBitrate
    writer.write(build_audio_specific_config(frequency_index, channel_count))
    return writer.getvalue()


def build_es_descriptor(frequency_index: int, channel_count: int, max_frame_size: int, bitrate: int) -> bytes:
    """Build the complete ES_Descriptor for one AAC-LC stream."""
    writer = ByteWriter()
    writer.write(ES_DESCRIPTOR_TOP)
    writer.write(build_decoder_config_descriptor(max_frame_size, bitrate, frequency_index, channel_count))
    writer.write(SL_CONFIG_DESCRIPTOR)
    return writer.getvalue()
