# Sampling frequencies indexed by the 4-bit samplingFrequencyIndex of an
# AudioSpecificConfig (ISO/IEC 14496-3, table 1.18).
SAMPLING_FREQUENCIES = (
    96000,
    88200,
    64000,
    48000,
    44100,
    32000,
    24000,
    22050,
    16000,
    12000,
    11025,
    8000,
    7350,
)

# Index used when the sample rate is not in the table (44100 Hz).
FALLBACK_FREQUENCY_INDEX = 4

# AAC-LC frames carry 1024 samples per channel.
SAMPLES_PER_FRAME = 1024

# The encoder emits a 2-byte priming frame first; it carries no samples.
PRIMING_FRAME_SIZE = 2

# Offset added to Unix time for MP4 (1904-based) creation and modification times.
MP4_EPOCH_OFFSET = (66 * 365 + 16) * 24 * 60 * 60

# Movie header timescale: durations in milliseconds.
MOVIE_TIMESCALE = 1000

UINT32_MAX = 0xFFFFFFFF

# Path from moov down to the chunk offset box.
STCO_PATH = "trak.mdia.minf.stbl.stco"
