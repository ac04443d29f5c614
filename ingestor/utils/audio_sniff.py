"""Audio Resource Ingestor - Media type detection by content sniffing.

Looks at leading magic bytes only (stdlib, no audio dependencies). The
caller-supplied Content-Type is never trusted for validation.

MPEG audio is recognised by either an ID3v2 tag header or a valid MPEG
audio frame header at offset 0.
"""

from ingestor.config import EXPECTED_CONTENT_TYPE
from ingestor.errors import Outcome, invalid_input

OCTET_STREAM = "application/octet-stream"

# ID3v2 header: "ID3" + major version + revision + flags + 4 syncsafe size bytes
_ID3_MAGIC = b"ID3"
_ID3_HEADER_LEN = 10
_ID3_SUPPORTED_MAJOR_VERSIONS = (2, 3, 4)


def _looks_like_id3v2(data: bytes) -> bool:
    if len(data) < _ID3_HEADER_LEN or not data.startswith(_ID3_MAGIC):
        return False
    major, revision = data[3], data[4]
    if major not in _ID3_SUPPORTED_MAJOR_VERSIONS or revision == 0xFF:
        return False
    # Syncsafe integers never have the high bit set
    return all(b < 0x80 for b in data[6:10])


def _looks_like_mpeg_frame(data: bytes) -> bool:
    """Check for an MPEG audio frame header (11-bit frame sync + sane fields)."""
    if len(data) < 4:
        return False
    b0, b1, b2 = data[0], data[1], data[2]
    if b0 != 0xFF or (b1 & 0xE0) != 0xE0:
        return False
    version_bits = (b1 >> 3) & 0x03
    layer_bits = (b1 >> 1) & 0x03
    bitrate_index = (b2 >> 4) & 0x0F
    sample_rate_index = (b2 >> 2) & 0x03
    # 01 = reserved version, 00 = reserved layer (also rules out AAC ADTS)
    if version_bits == 0x01 or layer_bits == 0x00:
        return False
    # 1111 = invalid bitrate, 11 = reserved sample rate
    return bitrate_index != 0x0F and sample_rate_index != 0x03


def detect_media_type(data: bytes | None) -> str:
    """Detect the media type of a payload from its leading bytes.

    Args:
        data: Raw payload bytes.

    Returns:
        A MIME type string; "application/octet-stream" when unrecognised.
    """
    if not data:
        return OCTET_STREAM
    if _looks_like_id3v2(data) or _looks_like_mpeg_frame(data):
        return "audio/mpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wav"
    if data.startswith(b"OggS"):
        return "audio/ogg"
    if data.startswith(b"fLaC"):
        return "audio/flac"
    return OCTET_STREAM


def validate_audio_payload(data: bytes | None, expected: str = EXPECTED_CONTENT_TYPE) -> Outcome:
    """Confirm data is a non-empty payload of the expected media type.

    Returns:
        Success outcome carrying the detected type, or INVALID_INPUT.
    """
    if not data:
        return invalid_input("Audio file is required")
    detected = detect_media_type(data)
    if detected != expected:
        return invalid_input(f"Invalid audio payload: detected {detected}, expected {expected}")
    return Outcome.success(detected)


__all__ = [
    "OCTET_STREAM",
    "detect_media_type",
    "validate_audio_payload",
]
