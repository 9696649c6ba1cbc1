from __future__ import annotations

import logging
import math
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


class FFprobeError(RuntimeError):
    """Raised when ffprobe cannot report the duration of an audio file."""


def read_duration(
    path: Path,
    *,
    ffprobe_path: str = "ffprobe",
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> float:
    """
    Return the container duration of ``path`` in seconds using ffprobe.
    """
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        result = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise FFprobeError(f"ffprobe executable not found: {ffprobe_path}") from exc
    except subprocess.TimeoutExpired as exc:
        raise FFprobeError(f"ffprobe timed out after {timeout:g}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode("utf-8", errors="ignore") if exc.stderr else ""
        raise FFprobeError(f"ffprobe failed: {stderr.strip()}") from exc
    output = result.stdout.decode("utf-8", errors="ignore").strip()
    # some containers report several lines; the first one is the format duration
    first_line = output.splitlines()[0] if output else ""
    try:
        duration = float(first_line)
    except ValueError as exc:
        raise FFprobeError(f"ffprobe returned no duration: {output!r}") from exc
    if not math.isfinite(duration) or duration < 0:
        raise FFprobeError(f"ffprobe returned an invalid duration: {output!r}")
    return duration


def probe_duration(
    path: Path,
    *,
    ffprobe_path: str = "ffprobe",
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> float:
    """Like :func:`read_duration`, but returns ``0.0`` when probing fails."""
    try:
        return read_duration(path, ffprobe_path=ffprobe_path, timeout=timeout)
    except FFprobeError as exc:
        logger.warning("Could not determine duration for %s: %s", path, exc)
        return 0.0


def format_duration(seconds: float | int | None) -> str:
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        seconds = 0
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


__all__ = ["FFprobeError", "format_duration", "probe_duration", "read_duration"]
