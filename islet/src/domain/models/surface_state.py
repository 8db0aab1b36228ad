"""
Surface State Models for Islet.

Defines the top-level UI state of the popover surface, the content modes
available while it is open, and the substates each mode carries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union


class OpenReason(Enum):
    """Why the surface is being opened."""
    CLICK = "click"
    HOVER = "hover"
    HOTKEY = "hotkey"
    NOTIFICATION = "notification"
    BOOT = "boot"
    UNKNOWN = "unknown"


class DictationPhase(Enum):
    """Phases of a voice dictation."""
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


# --- Substates ----------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ImageRef:
    """Reference to an attached image; the payload lives with the caller."""
    id: str
    media_type: str
    data_size: int

    def __post_init__(self):
        if self.data_size < 0:
            raise ValueError(f"Image data size cannot be negative: {self.data_size}")

    def __eq__(self, other):
        if not isinstance(other, ImageRef):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)


@dataclass(frozen=True)
class PromptSubstate:
    """Prompt composition state."""
    text: str = ""
    selected_agent_id: Optional[str] = None
    show_agent_picker: bool = False
    attached_images: Tuple[ImageRef, ...] = ()
    error_message: Optional[str] = None

    @property
    def trimmed_text(self) -> str:
        return self.text.strip()

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to submit."""
        return not self.trimmed_text and not self.attached_images

    def clear_error(self) -> "PromptSubstate":
        return replace(self, error_message=None)

    def clear_all(self) -> "PromptSubstate":
        """Reset the compose box, keeping the agent selection."""
        return replace(
            self,
            text="",
            attached_images=(),
            error_message=None,
            show_agent_picker=False,
        )


@dataclass(frozen=True)
class ProcessingSubstate:
    """A running job. The session id stays fixed for the job's lifetime."""
    session_id: str
    start_time: datetime
    streaming_text: str = ""
    can_cancel: bool = True

    def elapsed_since(self, now: datetime) -> float:
        """Seconds between the job start and ``now``."""
        return (now - self.start_time).total_seconds()

    @property
    def elapsed_time(self) -> float:
        """Seconds since the job started, by the wall clock."""
        return self.elapsed_since(datetime.now())


@dataclass(frozen=True)
class ResultSubstate:
    session_id: str
    streaming_text: str
    is_expanded: bool = False
    follow_up_text: str = ""


@dataclass(frozen=True)
class DictationSubstate:
    previous_prompt_state: PromptSubstate
    phase: DictationPhase = DictationPhase.RECORDING
    audio_level: float = 0.0

    @property
    def is_recording(self) -> bool:
        return self.phase == DictationPhase.RECORDING

    @property
    def is_transcribing(self) -> bool:
        return self.phase == DictationPhase.TRANSCRIBING


# --- Retry bookkeeping ----------------------------------------------------------

@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    base64: str
    media_type: str


PromptPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class PendingRetryState:
    """A failed background submission that can be resubmitted later."""
    error_message: str
    parts: Tuple[PromptPart, ...] = ()
    agent_id: Optional[str] = None
    attempt_count: int = 0

    MAX_ATTEMPTS = 3

    def __post_init__(self):
        if self.attempt_count < 0:
            raise ValueError(f"Attempt count cannot be negative: {self.attempt_count}")

    @property
    def can_retry(self) -> bool:
        return self.attempt_count < self.MAX_ATTEMPTS

    def increment_attempt(self) -> "PendingRetryState":
        return replace(self, attempt_count=self.attempt_count + 1)


# --- Content states (valid only while opened) -------------------------------------

@dataclass(frozen=True)
class PromptContent:
    state: PromptSubstate = field(default_factory=PromptSubstate)


@dataclass(frozen=True)
class ProcessingContent:
    state: ProcessingSubstate


@dataclass(frozen=True)
class ResultContent:
    state: ResultSubstate


@dataclass(frozen=True)
class MenuContent:
    pass


@dataclass(frozen=True)
class DictatingContent:
    state: DictationSubstate


ContentState = Union[PromptContent, ProcessingContent, ResultContent, MenuContent, DictatingContent]

CONTENT_NAMES = {
    PromptContent: "prompt",
    ProcessingContent: "processing",
    ResultContent: "result",
    MenuContent: "menu",
    DictatingContent: "dictating",
}


def content_name(content: ContentState) -> str:
    return CONTENT_NAMES[type(content)]


def shows_compact_when_closed(content: ContentState) -> bool:
    """Only a running job keeps a compact indicator after the surface closes."""
    return isinstance(content, ProcessingContent)


# --- Top-level UI state ------------------------------------------------------------

@dataclass(frozen=True)
class Closed:
    pass


@dataclass(frozen=True)
class Hovering:
    pass


@dataclass(frozen=True)
class Opened:
    content: ContentState


@dataclass(frozen=True)
class ClosedProcessing:
    """Surface closed while the job keeps running in the background."""
    processing: ProcessingSubstate


UIState = Union[Closed, Hovering, Opened, ClosedProcessing]


def is_open(state: UIState) -> bool:
    return isinstance(state, Opened)


def is_closed(state: UIState) -> bool:
    return isinstance(state, (Closed, Hovering, ClosedProcessing))


def is_processing_in_background(state: UIState) -> bool:
    return isinstance(state, ClosedProcessing)


def describe_state(state: UIState) -> str:
    """Short human readable name used in logs, e.g. ``opened(prompt)``."""
    if isinstance(state, Opened):
        return f"opened({content_name(state.content)})"
    if isinstance(state, ClosedProcessing):
        return "closed_processing"
    if isinstance(state, Hovering):
        return "hovering"
    return "closed"
