from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    strict_sample_rate: bool = Field(
        False,
        description="Reject sample rates missing from the AAC frequency table instead of falling back to 44100 Hz.",
    )
    keep_partial_output: bool = False  # Whether write_m4a_file leaves a partial file behind on failure.
    log_level: str = "INFO"  # The logging level applied to the m4a_muxer loggers.

    class Config:
        env_file = ".env"
        env_prefix = "M4A_MUXER_"
        extra = "ignore"


settings = Settings()
