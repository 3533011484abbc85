"""
Pydantic models for the narrated episode pipeline.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field, model_validator

# Hard bounds of the avatar-video engine (seconds)
MIN_HIGHLIGHT_DURATION = 2
MAX_HIGHLIGHT_DURATION = 60


def new_id() -> str:
    """Short random identifier for stored records."""
    return uuid.uuid4().hex[:12]


class TaskStatus(str, Enum):
    """Lifecycle status of a Task."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for completed and failed."""
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def can_transition_to(self, target: "TaskStatus") -> bool:
        """Check that target is a legal forward step from this status."""
        return target in _TASK_TRANSITIONS[self]


_TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class PipelineStage(str, Enum):
    """Named phase of the orchestrator's sequential pipeline."""
    QUEUED = "queued"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    SCRIPTING = "scripting"
    SYNTHESIZING = "synthesizing"
    INTRO_OUTRO = "intro_outro"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"


class InputKind(str, Enum):
    """Kind of source input a Task was submitted with."""
    VIDEO_URL = "video-url"
    RAW_TEXT = "raw-text"
    ARTICLE_URL = "article-url"


class NarrationMode(str, Enum):
    """Quality mode requested from the narration engine.

    The engine only knows quick and deep; medium is sent as quick.
    """
    QUICK = "quick"
    MEDIUM = "medium"
    DEEP = "deep"


class PodcastStyle(str, Enum):
    """Tone of the generated script."""
    EDUCATIONAL = "educational"
    CASUAL = "casual"
    PROFESSIONAL = "professional"


class InputDescriptor(BaseModel):
    """What the user submitted: a kind plus its payload (URL or text)."""

    kind: InputKind
    payload: str


class TaskOptions(BaseModel):
    """Per-submission options persisted with the Task."""

    mode: NarrationMode = NarrationMode.MEDIUM
    style: PodcastStyle = PodcastStyle.CASUAL
    voice_id_1: str | None = None
    voice_id_2: str | None = None
    intro_template: str | None = None
    outro_template: str | None = None

    @computed_field
    @property
    def has_voice_override(self) -> bool:
        """True when both hosts were chosen explicitly for this call."""
        return bool(self.voice_id_1 and self.voice_id_2)


class ProgressSnapshot(BaseModel):
    """Queryable progress of one Task."""

    stage: PipelineStage = PipelineStage.QUEUED
    percent: float = 0
    message: str = ""
    estimated_time_remaining: float | None = None  # seconds
    updated_at: datetime = Field(default_factory=datetime.now)


class DialogueTurn(BaseModel):
    """One speaker turn of a narrated dialogue."""

    speaker_id: str
    speaker_name: str
    text: str


class TaskArtifacts(BaseModel):
    """Everything the pipeline produced for a Task."""

    title: str | None = None
    transcript: str | None = None
    language: str | None = None
    source_duration: float | None = None
    summary: str | None = None
    podcast_script: str | None = None
    source_audio_url: str | None = None
    source_audio_key: str | None = None
    episode_id: str | None = None
    episode_title: str | None = None
    primary_audio_url: str | None = None
    assembled_audio_url: str | None = None
    assembled_audio_key: str | None = None
    dialogue_turns: list[DialogueTurn] = Field(default_factory=list)

    @computed_field
    @property
    def final_audio_url(self) -> str | None:
        """Assembled episode when intro/outro were added, else the primary one."""
        return self.assembled_audio_url or self.primary_audio_url


class Task(BaseModel):
    """One user-submitted request, owned by its creator."""

    id: str = Field(default_factory=new_id)
    owner_id: str
    input: InputDescriptor
    options: TaskOptions = Field(default_factory=TaskOptions)
    status: TaskStatus = TaskStatus.PENDING
    progress: ProgressSnapshot = Field(default_factory=ProgressSnapshot)
    artifacts: TaskArtifacts = Field(default_factory=TaskArtifacts)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None


class HighlightCandidate(BaseModel):
    """Highlight window proposed by the segmenter, before clipping."""

    start_turn_index: int
    end_turn_index: int
    title: str
    description: str
    rationale: str = ""
    start_time: int
    end_time: int
    duration: int
    transcript: str


class Highlight(BaseModel):
    """Bounded excerpt of a completed Task's episode."""

    id: str = Field(default_factory=new_id)
    task_id: str
    owner_id: str
    title: str
    description: str
    start_time: int
    end_time: int
    duration: int
    transcript: str
    audio_url: str
    audio_key: str
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_window(self) -> "Highlight":
        if not MIN_HIGHLIGHT_DURATION <= self.duration <= MAX_HIGHLIGHT_DURATION:
            raise ValueError(
                f"duration must be within {MIN_HIGHLIGHT_DURATION}-"
                f"{MAX_HIGHLIGHT_DURATION}s, got {self.duration}"
            )
        if self.end_time - self.start_time != self.duration:
            raise ValueError("end_time - start_time must equal duration")
        return self


class AvatarVideoStatus(str, Enum):
    """Status of one avatar video rendering attempt."""
    PENDING = "pending"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for succeeded and failed."""
        return self in (AvatarVideoStatus.SUCCEEDED, AvatarVideoStatus.FAILED)

    def can_transition_to(self, target: "AvatarVideoStatus") -> bool:
        """Check that target is a legal forward step from this status."""
        return target in _AVATAR_TRANSITIONS[self]


_AVATAR_TRANSITIONS: dict[AvatarVideoStatus, frozenset[AvatarVideoStatus]] = {
    AvatarVideoStatus.PENDING: frozenset({AvatarVideoStatus.SUBMITTED, AvatarVideoStatus.FAILED}),
    AvatarVideoStatus.SUBMITTED: frozenset({AvatarVideoStatus.PROCESSING, AvatarVideoStatus.FAILED}),
    AvatarVideoStatus.PROCESSING: frozenset({AvatarVideoStatus.SUCCEEDED, AvatarVideoStatus.FAILED}),
    AvatarVideoStatus.SUCCEEDED: frozenset(),
    AvatarVideoStatus.FAILED: frozenset(),
}


class AvatarFailureKind(str, Enum):
    """Why an avatar video attempt ended as failed."""
    PROVIDER = "provider"  # engine reported failure
    TIMEOUT = "timeout"    # polling budget exhausted
    ERROR = "error"        # submission or transport error


class AvatarVideoTask(BaseModel):
    """One attempt to render a Highlight as a talking-head video."""

    id: str = Field(default_factory=new_id)
    highlight_id: str
    task_id: str
    owner_id: str
    image_url: str
    audio_url: str
    mode: Literal["std", "pro"] = "std"
    prompt: str | None = None
    external_task_id: str
    engine_task_id: str | None = None
    status: AvatarVideoStatus = AvatarVideoStatus.PENDING
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None
    error_message: str | None = None
    failure_kind: AvatarFailureKind | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class VoicePreference(BaseModel):
    """Per-user pair of narration voices."""

    owner_id: str
    host1_voice_id: str
    host2_voice_id: str
    updated_at: datetime = Field(default_factory=datetime.now)


class Voice(BaseModel):
    """Narration voice offered by the engine."""

    speaker_id: str
    name: str
    gender: str | None = None
    language: str | None = None
    demo_audio_url: str | None = None


class VideoInfo(BaseModel):
    """Preview of a video source before submission."""

    video_id: str
    title: str | None = None
    duration: float | None = None
    thumbnail_url: str | None = None
    channel: str | None = None


# ═══════════════════════════════════════════════════════════════════════════
# API request/response models
# ═══════════════════════════════════════════════════════════════════════════


class SubmitTaskRequest(BaseModel):
    """Request to create a Task."""

    kind: InputKind
    payload: str = Field(..., min_length=1)
    mode: NarrationMode = NarrationMode.MEDIUM
    style: PodcastStyle = PodcastStyle.CASUAL
    voice_id_1: str | None = None
    voice_id_2: str | None = None
    intro_template: str | None = None
    outro_template: str | None = None

    def to_options(self) -> TaskOptions:
        """Extract the options persisted with the Task."""
        return TaskOptions(
            mode=self.mode,
            style=self.style,
            voice_id_1=self.voice_id_1,
            voice_id_2=self.voice_id_2,
            intro_template=self.intro_template,
            outro_template=self.outro_template,
        )


class SubmitTaskResponse(BaseModel):
    """Returned immediately on submission."""

    task_id: str


class ProgressResponse(BaseModel):
    """Read-only progress view of a Task."""

    task_id: str
    status: TaskStatus
    stage: PipelineStage
    percent: float
    message: str
    estimated_time_remaining: float | None = None
    error_message: str | None = None


class HighlightRequest(BaseModel):
    """Request to derive highlights from a completed Task."""

    target_duration: int = Field(default=60, ge=10, le=600)


class AvatarVideoRequest(BaseModel):
    """Request to render a Highlight as an avatar video."""

    mode: Literal["std", "pro"] | None = None
    prompt: str | None = None


class VoicePreferenceRequest(BaseModel):
    """Request to store the owner's preferred voices."""

    host1_voice_id: str = Field(..., min_length=1)
    host2_voice_id: str = Field(..., min_length=1)
