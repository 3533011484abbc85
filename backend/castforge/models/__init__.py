"""
Pydantic models for the narrated episode pipeline.

Exports:
    - Record models (Task, Highlight, AvatarVideoTask, VoicePreference)
    - Status enums with their forward-only transition rules
"""

from castforge.models.schemas import (
    AvatarVideoStatus,
    AvatarVideoTask,
    DialogueTurn,
    Highlight,
    HighlightCandidate,
    InputKind,
    PipelineStage,
    ProgressSnapshot,
    Task,
    TaskStatus,
    VoicePreference,
)

__all__ = [
    "AvatarVideoStatus",
    "AvatarVideoTask",
    "DialogueTurn",
    "Highlight",
    "HighlightCandidate",
    "InputKind",
    "PipelineStage",
    "ProgressSnapshot",
    "Task",
    "TaskStatus",
    "VoicePreference",
]
