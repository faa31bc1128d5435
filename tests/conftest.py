"""
Pytest configuration for the m4a header tests.

Settings are read from the environment; a project .env is loaded first
so local overrides (e.g. M4A_MUXER_LOG_LEVEL) apply to test runs too.
"""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

# Fixed creation time so headers are byte-for-byte reproducible.
FIXED_UNIX_TIME = 1_700_000_000


@pytest.fixture
def stereo_frame_sizes() -> list[int]:
    return [2, 200, 205, 198]


@pytest.fixture
def stereo_header(stereo_frame_sizes) -> bytes:
    from m4a_muxer.muxer.m4a_header import build_header

    return build_header(44100, 2, stereo_frame_sizes, 128000, unix_time=FIXED_UNIX_TIME)


@pytest.fixture
def strict_sample_rate(monkeypatch):
    from m4a_muxer.configs import settings

    monkeypatch.setattr(settings, "strict_sample_rate", True)
