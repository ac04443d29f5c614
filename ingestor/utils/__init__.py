"""Audio Resource Ingestor - Utility modules."""

from ingestor.utils.atomic_io import (
    atomic_write_bytes,
    atomic_write_text,
    cleanup_orphan_temp_files,
)
from ingestor.utils.audio_sniff import detect_media_type, validate_audio_payload
from ingestor.utils.keys import generate_storage_key, is_valid_storage_key, storage_key_problem

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "atomic_write_text",
    "cleanup_orphan_temp_files",
    # audio_sniff
    "detect_media_type",
    "validate_audio_payload",
    # keys
    "generate_storage_key",
    "is_valid_storage_key",
    "storage_key_problem",
]
