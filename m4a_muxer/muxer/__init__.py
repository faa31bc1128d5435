"""
M4A muxer package.

Builds the container header for a single AAC-LC audio track, to be
followed on disk by the raw AAC frames:

- box: Generic MP4 box tree (leaf or internal nodes, serialization, path lookup)
- esds: Elementary Stream Descriptor and AudioSpecificConfig encoding
- m4a_header: ftyp/moov/mdat layout with chunk offset and mdat size patching
- m4a_parser: Read-side inverse of m4a_header for inspecting produced headers
"""

from m4a_muxer.muxer.m4a_header import build_header

__all__ = ["build_header"]
