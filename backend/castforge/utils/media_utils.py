"""
Media utilities for audio file handling.

Provides common functions for audio assets:
- Speech duration estimation from text length
- File suffix detection from URLs
"""

from pathlib import Path
from urllib.parse import urlparse

AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".m4a", ".flac", ".aac", ".ogg", ".opus", ".webm"})

# Narration pace used for timing estimates (seconds per character)
SECONDS_PER_CHAR = 0.3


def audio_suffix(source: str, default: str = ".mp3") -> str:
    """Guess the audio file extension of a URL or path.

    Args:
        source: URL or filesystem path
        default: Extension to use when none is recognized

    Returns:
        Lowercase extension including the dot
    """
    suffix = Path(urlparse(source).path).suffix.lower()
    return suffix if suffix in AUDIO_EXTENSIONS else default


def estimate_speech_seconds(text: str, seconds_per_char: float = SECONDS_PER_CHAR) -> float:
    """Estimate how long narrating text takes.

    Args:
        text: Narration text
        seconds_per_char: Speech pace

    Returns:
        Estimated duration in seconds
    """
    return len(text) * seconds_per_char
