import logging
import os
from collections.abc import Sequence

from m4a_muxer.configs import settings
from m4a_muxer.muxer.m4a_header import build_header

logger = logging.getLogger(__name__)


def write_m4a_file(
    path: str | os.PathLike,
    frames: Sequence[bytes],
    sample_rate: int,
    channel_count: int,
    bitrate: int,
) -> int:
    """
    Write an .m4a file: the generated header followed by the raw AAC frames.

    ``frames`` must start with the encoder's 2-byte priming frame. On any
    failure the partially written file is removed (unless
    ``keep_partial_output`` is set) and the error is re-raised, leaving the
    choice of a fallback container to the caller.

    Returns:
        The number of bytes written.
    """
    logging.getLogger("m4a_muxer").setLevel(settings.log_level)
    header = build_header(sample_rate, channel_count, [len(frame) for frame in frames], bitrate)
    written = 0
    created = False
    try:
        with open(path, "wb") as f:
            created = True
            f.write(header)
            written += len(header)
            for frame in frames:
                f.write(frame)
                written += len(frame)
    except Exception:
        if created and not settings.keep_partial_output and os.path.exists(path):
            logger.warning("Removing partial m4a output %s after %d bytes", path, written)
            os.remove(path)
        raise

    logger.info("Wrote %s: header=%d bytes, %d frames, total=%d bytes", path, len(header), len(frames), written)
    return written
