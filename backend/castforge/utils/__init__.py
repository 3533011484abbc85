"""
Shared utilities.

Modules:
    json_utils: JSON extraction and parsing from LLM responses
    media_utils: Speech estimates and suffix detection
"""

from castforge.utils.json_utils import extract_json, load_json_payload
from castforge.utils.media_utils import (
    audio_suffix,
    estimate_speech_seconds,
)

__all__ = [
    # json_utils
    "extract_json",
    "load_json_payload",
    # media_utils
    "audio_suffix",
    "estimate_speech_seconds",
]
