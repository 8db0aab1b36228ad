"""Domain models for Islet."""

from .surface_state import (
    OpenReason,
    DictationPhase,
    ImageRef,
    PromptSubstate,
    ProcessingSubstate,
    ResultSubstate,
    DictationSubstate,
    TextPart,
    ImagePart,
    PendingRetryState,
    PromptContent,
    ProcessingContent,
    ResultContent,
    MenuContent,
    DictatingContent,
    Closed,
    Hovering,
    Opened,
    ClosedProcessing,
)
from .transitions import StateChangeEvent

__all__ = [
    'OpenReason',
    'DictationPhase',
    'ImageRef',
    'PromptSubstate',
    'ProcessingSubstate',
    'ResultSubstate',
    'DictationSubstate',
    'TextPart',
    'ImagePart',
    'PendingRetryState',
    'PromptContent',
    'ProcessingContent',
    'ResultContent',
    'MenuContent',
    'DictatingContent',
    'Closed',
    'Hovering',
    'Opened',
    'ClosedProcessing',
    'StateChangeEvent',
]
