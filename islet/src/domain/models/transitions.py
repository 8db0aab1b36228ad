"""
Surface Transition Models for Islet.

Each transition is a small immutable event carrying only the payload the
state machine needs to apply it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union, get_args

from .surface_state import (
    ImageRef,
    OpenReason,
    PendingRetryState,
    PromptSubstate,
    UIState,
)


# Visibility

@dataclass(frozen=True)
class Hover:
    pass


@dataclass(frozen=True)
class Unhover:
    pass


@dataclass(frozen=True)
class Open:
    reason: OpenReason = OpenReason.UNKNOWN


@dataclass(frozen=True)
class Close:
    pass


@dataclass(frozen=True)
class Dismiss:
    pass


# Prompt editing

@dataclass(frozen=True)
class UpdatePromptText:
    text: str


@dataclass(frozen=True)
class SelectAgent:
    agent_id: Optional[str]


@dataclass(frozen=True)
class ToggleAgentPicker:
    pass


@dataclass(frozen=True)
class AttachImage:
    image: ImageRef


@dataclass(frozen=True)
class RemoveImage:
    image_id: str


@dataclass(frozen=True)
class ClearImages:
    pass


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class ClearError:
    pass


# Processing

@dataclass(frozen=True)
class StartProcessing:
    session_id: str


@dataclass(frozen=True)
class UpdateStreamingText:
    text: str


@dataclass(frozen=True)
class CompleteProcessing:
    result_text: str


@dataclass(frozen=True)
class CancelProcessing:
    pass


@dataclass(frozen=True)
class FailProcessing:
    error: str
    can_retry: bool


# Result

@dataclass(frozen=True)
class ShowResult:
    session_id: str
    text: str


@dataclass(frozen=True)
class ToggleResultExpanded:
    pass


@dataclass(frozen=True)
class UpdateFollowUpText:
    text: str


# Menu

@dataclass(frozen=True)
class ShowMenu:
    pass


@dataclass(frozen=True)
class HideMenu:
    pass


# Dictation

@dataclass(frozen=True)
class StartDictation:
    previous_prompt: PromptSubstate


@dataclass(frozen=True)
class UpdateAudioLevel:
    level: float


@dataclass(frozen=True)
class StartTranscribing:
    pass


@dataclass(frozen=True)
class CompleteDictation:
    transcription: Optional[str] = None


@dataclass(frozen=True)
class CancelDictation:
    pass


# Retry

@dataclass(frozen=True)
class SetPendingRetry:
    retry: PendingRetryState


@dataclass(frozen=True)
class ClearPendingRetry:
    pass


@dataclass(frozen=True)
class ExecutePendingRetry:
    pass


Transition = Union[
    Hover, Unhover, Open, Close, Dismiss,
    UpdatePromptText, SelectAgent, ToggleAgentPicker, AttachImage, RemoveImage,
    ClearImages, SetError, ClearError,
    StartProcessing, UpdateStreamingText, CompleteProcessing, CancelProcessing, FailProcessing,
    ShowResult, ToggleResultExpanded, UpdateFollowUpText,
    ShowMenu, HideMenu,
    StartDictation, UpdateAudioLevel, StartTranscribing, CompleteDictation, CancelDictation,
    SetPendingRetry, ClearPendingRetry, ExecutePendingRetry,
]

ALL_TRANSITIONS = get_args(Transition)

PROMPT_EDITS = (
    UpdatePromptText, SelectAgent, ToggleAgentPicker, AttachImage,
    RemoveImage, ClearImages, SetError, ClearError,
)


def transition_name(transition) -> str:
    return type(transition).__name__


@dataclass
class StateChangeEvent:
    """Represents an accepted transition with metadata."""
    from_state: UIState
    to_state: UIState
    transition: Transition
    timestamp: datetime
