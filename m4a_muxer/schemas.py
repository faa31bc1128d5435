from pydantic import BaseModel, Field, field_validator

from m4a_muxer.const import PRIMING_FRAME_SIZE, UINT32_MAX


class HeaderRequest(BaseModel):
    sample_rate: int = Field(..., gt=0, le=UINT32_MAX, description="Sampling frequency in Hz (e.g. 44100).")
    channel_count: int = Field(..., ge=1, le=15, description="Number of audio channels.")
    frame_sizes: list[int] = Field(
        ..., min_length=2, description="Size in bytes of every AAC frame, priming frame first."
    )
    bitrate: int = Field(..., ge=0, le=UINT32_MAX, description="Target bitrate in bits per second.")

    @field_validator("frame_sizes")
    @classmethod
    def validate_frame_sizes(cls, value: list[int]) -> list[int]:
        if value[0] != PRIMING_FRAME_SIZE:
            raise ValueError(f"first frame must be the {PRIMING_FRAME_SIZE}-byte priming frame, got {value[0]}")
        for index, size in enumerate(value):
            if size < 0 or size > UINT32_MAX:
                raise ValueError(f"frame {index} size {size} does not fit in 32 bits")
        return value

    @property
    def total_stream_size(self) -> int:
        return sum(self.frame_sizes)
