"""Audio Resource Ingestor - Atomic file writes for the filesystem object store.

A blob becomes visible only through a rename: bytes go to ``<name>.tmp``
next to the target, are fsynced, and the temp file is then renamed over the
final name. Readers see either the complete payload or nothing. A crash
mid-write leaves only the temp file, which startup cleanup removes.
"""

import os
from pathlib import Path

TEMP_SUFFIX = ".tmp"


def _write_fully(fd: int, data: bytes) -> None:
    # os.write may accept fewer bytes than offered
    remaining = memoryview(data)
    while remaining:
        try:
            n = os.write(fd, remaining)
        except InterruptedError:
            continue
        if n == 0:
            raise OSError("short write: os.write() accepted no bytes")
        remaining = remaining[n:]


def _sync_parent(path: Path) -> None:
    """Best-effort fsync of path's directory so the rename survives a crash."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        dir_fd = os.open(path.parent, flags)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def temp_path_for(final_path: str | Path) -> Path:
    """Return the temp path used while writing final_path."""
    final_path = Path(final_path)
    return final_path.with_name(final_path.name + TEMP_SUFFIX)


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    """Write data to final_path so that it appears complete or not at all.

    A stale temp file from an earlier crash is truncated and reused. If the
    write fails, the temp file is removed and final_path keeps its previous
    state.

    Raises:
        OSError: If the directory cannot be created or the write / rename fails.
    """
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(final_path)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    published = False
    try:
        try:
            _write_fully(fd, data)
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(temp_path, final_path)
        published = True
    finally:
        if not published:
            temp_path.unlink(missing_ok=True)

    _sync_parent(final_path)


def atomic_write_text(final_path: str | Path, text: str, encoding: str = "utf-8") -> None:
    """Text variant of atomic_write_bytes."""
    atomic_write_bytes(final_path, text.encode(encoding))


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Delete ``*.tmp`` files anywhere under directory.

    Run once at startup, before any writer is active.

    Returns:
        How many temp files were deleted.
    """
    root = Path(directory)
    if not root.is_dir():
        return 0

    removed = 0
    for orphan in root.rglob(f"*{TEMP_SUFFIX}"):
        if orphan.is_file():
            try:
                orphan.unlink()
            except OSError:
                continue  # Best-effort
            removed += 1
    return removed
