"""
Surface State Machine for Islet.

Governs the popover surface: closed, hovering, opened with one content mode,
or closed while a job keeps processing in the background. Every transition is
validated against the current state before it is applied, so a rejected
transition never leaves the machine partially updated.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type

from ..models.surface_state import (
    Closed,
    ClosedProcessing,
    ContentState,
    DictatingContent,
    DictationPhase,
    DictationSubstate,
    Hovering,
    MenuContent,
    OpenReason,
    Opened,
    PendingRetryState,
    ProcessingContent,
    ProcessingSubstate,
    PromptContent,
    PromptSubstate,
    ResultContent,
    ResultSubstate,
    UIState,
    describe_state,
    is_closed,
    is_open,
)
from ..models.transitions import (
    PROMPT_EDITS,
    AttachImage,
    CancelDictation,
    CancelProcessing,
    ClearError,
    ClearImages,
    ClearPendingRetry,
    Close,
    CompleteDictation,
    CompleteProcessing,
    Dismiss,
    ExecutePendingRetry,
    FailProcessing,
    HideMenu,
    Hover,
    Open,
    RemoveImage,
    SelectAgent,
    SetError,
    SetPendingRetry,
    ShowMenu,
    ShowResult,
    StartDictation,
    StartProcessing,
    StartTranscribing,
    StateChangeEvent,
    ToggleAgentPicker,
    ToggleResultExpanded,
    Transition,
    Unhover,
    UpdateAudioLevel,
    UpdateFollowUpText,
    UpdatePromptText,
    UpdateStreamingText,
    transition_name,
)

logger = logging.getLogger("islet.state_machine")

DEFAULT_HISTORY_LIMIT = 100

RETRY_OPEN_REASONS = (OpenReason.HOTKEY, OpenReason.CLICK)


def _opened_with(state: UIState, content_type: Type) -> bool:
    return isinstance(state, Opened) and isinstance(state.content, content_type)


def _processing_active(state: UIState) -> bool:
    return _opened_with(state, ProcessingContent) or isinstance(state, ClosedProcessing)


class SurfaceStateMachine:
    """
    State machine driving the popover surface.

    Features:
    - Four top-level states with nested content modes
    - Guarded transitions: ``apply`` returns False and changes nothing when
      a transition is not valid from the current state or would have no effect
    - Prompt checkpoint restored when the surface reopens
    - Background processing that survives closing the surface
    - Bounded pending-retry bookkeeping for failed background jobs
    - Transition history and change callbacks for debugging
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT,
                 clock: Callable[[], datetime] = datetime.now):
        if history_limit < 0:
            raise ValueError(f"History limit cannot be negative: {history_limit}")
        self._ui_state: UIState = Closed()
        self._pending_retry: Optional[PendingRetryState] = None
        self._prompt_state_cache = PromptSubstate()
        self._history_limit = history_limit
        self._clock = clock
        self._transition_history: List[StateChangeEvent] = []
        self._state_change_callbacks: List[Callable[[StateChangeEvent], None]] = []

        self._guards: Dict[type, Callable[[Transition], bool]] = {
            Hover: lambda t: isinstance(self._ui_state, Closed),
            Unhover: lambda t: isinstance(self._ui_state, Hovering),
            Open: lambda t: is_closed(self._ui_state),
            Close: lambda t: is_open(self._ui_state),
            Dismiss: lambda t: True,
            StartProcessing: lambda t: _opened_with(self._ui_state, PromptContent),
            UpdateStreamingText: lambda t: _processing_active(self._ui_state),
            CancelProcessing: lambda t: _processing_active(self._ui_state),
            CompleteProcessing: lambda t: _processing_active(self._ui_state),
            FailProcessing: lambda t: _processing_active(self._ui_state),
            ShowResult: lambda t: (_processing_active(self._ui_state)
                                   or _opened_with(self._ui_state, PromptContent)),
            ToggleResultExpanded: lambda t: _opened_with(self._ui_state, ResultContent),
            UpdateFollowUpText: lambda t: _opened_with(self._ui_state, ResultContent),
            ShowMenu: lambda t: is_open(self._ui_state),
            HideMenu: lambda t: _opened_with(self._ui_state, MenuContent),
            StartDictation: lambda t: _opened_with(self._ui_state, PromptContent),
            UpdateAudioLevel: lambda t: _opened_with(self._ui_state, DictatingContent),
            StartTranscribing: lambda t: _opened_with(self._ui_state, DictatingContent),
            CompleteDictation: lambda t: _opened_with(self._ui_state, DictatingContent),
            CancelDictation: lambda t: _opened_with(self._ui_state, DictatingContent),
            SetPendingRetry: lambda t: True,
            ClearPendingRetry: lambda t: True,
            ExecutePendingRetry: lambda t: self.has_pending_retry,
        }
        for edit in PROMPT_EDITS:
            self._guards[edit] = lambda t: _opened_with(self._ui_state, PromptContent)

        self._handlers: Dict[type, Callable[[Transition], None]] = {
            Hover: self._hover,
            Unhover: self._unhover,
            Open: self._open,
            Close: self._close,
            Dismiss: self._dismiss,
            UpdatePromptText: lambda t: self._edit_prompt(text=t.text),
            SelectAgent: lambda t: self._edit_prompt(selected_agent_id=t.agent_id,
                                                     show_agent_picker=False),
            ToggleAgentPicker: self._toggle_agent_picker,
            AttachImage: self._attach_image,
            RemoveImage: self._remove_image,
            ClearImages: lambda t: self._edit_prompt(attached_images=()),
            SetError: lambda t: self._edit_prompt(error_message=t.message),
            ClearError: lambda t: self._edit_prompt(error_message=None),
            StartProcessing: self._start_processing,
            UpdateStreamingText: self._update_streaming_text,
            CompleteProcessing: self._complete_processing,
            CancelProcessing: self._cancel_processing,
            FailProcessing: self._fail_processing,
            ShowResult: self._show_result,
            ToggleResultExpanded: self._toggle_result_expanded,
            UpdateFollowUpText: self._update_follow_up_text,
            ShowMenu: self._show_menu,
            HideMenu: self._hide_menu,
            StartDictation: self._start_dictation,
            UpdateAudioLevel: lambda t: self._edit_dictation(audio_level=t.level),
            StartTranscribing: lambda t: self._edit_dictation(phase=DictationPhase.TRANSCRIBING),
            CompleteDictation: self._complete_dictation,
            CancelDictation: self._cancel_dictation,
            SetPendingRetry: self._set_pending_retry,
            ClearPendingRetry: self._clear_pending_retry,
            ExecutePendingRetry: self._execute_pending_retry,
        }

    # --- Queries ------------------------------------------------------------------

    @property
    def ui_state(self) -> UIState:
        """Get the current UI state."""
        return self._ui_state

    def now(self) -> datetime:
        """Current time from the clock that stamps processing and history."""
        return self._clock()

    @property
    def pending_retry(self) -> Optional[PendingRetryState]:
        return self._pending_retry

    @property
    def prompt_state_cache(self) -> PromptSubstate:
        """Prompt checkpoint restored on the next open."""
        return self._prompt_state_cache

    @property
    def is_open(self) -> bool:
        return is_open(self._ui_state)

    @property
    def is_closed(self) -> bool:
        return is_closed(self._ui_state)

    @property
    def has_pending_retry(self) -> bool:
        """True when a retry record exists and has attempts left."""
        return self._pending_retry is not None and self._pending_retry.can_retry

    @property
    def current_prompt_state(self) -> Optional[PromptSubstate]:
        if _opened_with(self._ui_state, PromptContent):
            return self._ui_state.content.state
        return None

    @property
    def current_processing_state(self) -> Optional[ProcessingSubstate]:
        """Processing substate whether the surface is open or not."""
        if _opened_with(self._ui_state, ProcessingContent):
            return self._ui_state.content.state
        if isinstance(self._ui_state, ClosedProcessing):
            return self._ui_state.processing
        return None

    @property
    def background_processing_state(self) -> Optional[ProcessingSubstate]:
        if isinstance(self._ui_state, ClosedProcessing):
            return self._ui_state.processing
        return None

    @property
    def current_result_state(self) -> Optional[ResultSubstate]:
        if _opened_with(self._ui_state, ResultContent):
            return self._ui_state.content.state
        return None

    @property
    def current_dictation_state(self) -> Optional[DictationSubstate]:
        if _opened_with(self._ui_state, DictatingContent):
            return self._ui_state.content.state
        return None

    @property
    def content_type(self) -> Optional[ContentState]:
        """Open content, or the background job seen as processing content."""
        if isinstance(self._ui_state, Opened):
            return self._ui_state.content
        if isinstance(self._ui_state, ClosedProcessing):
            return ProcessingContent(self._ui_state.processing)
        return None

    # --- Transition entry point ---------------------------------------------------------

    def can_apply(self, transition: Transition) -> bool:
        """
        Check if a transition is valid from the current state.

        Args:
            transition: The transition to check

        Returns:
            True if the transition is valid from the current state, False otherwise
        """
        guard = self._guards.get(type(transition))
        if guard is None:
            return False
        return guard(transition)

    def apply(self, transition: Transition) -> bool:
        """
        Validate and apply a transition.

        Args:
            transition: The transition to apply

        Returns:
            True if the state changed, False if the transition was rejected
            or left everything as it was
        """
        if not self.can_apply(transition):
            logger.warning(
                f"Invalid transition {transition_name(transition)} "
                f"from state {describe_state(self._ui_state)}"
            )
            return False

        from_state = self._ui_state
        before = self._snapshot()
        self._handlers[type(transition)](transition)

        if self._snapshot() == before:
            # Valid but without effect, e.g. attaching an image id twice
            logger.debug(
                f"Transition {transition_name(transition)} had no effect "
                f"in state {describe_state(from_state)}"
            )
            return False

        event = StateChangeEvent(
            from_state=from_state,
            to_state=self._ui_state,
            transition=transition,
            timestamp=self._clock(),
        )
        self._record(event)
        logger.debug(
            f"State transition: {describe_state(from_state)} -> "
            f"{describe_state(self._ui_state)} ({transition_name(transition)})"
        )
        return True

    def _snapshot(self) -> tuple:
        return self._ui_state, self._pending_retry, self._prompt_state_cache

    def _record(self, event: StateChangeEvent):
        self._transition_history.append(event)

        # Keep only the last history_limit transitions
        overflow = len(self._transition_history) - self._history_limit
        if overflow > 0:
            del self._transition_history[:overflow]

        for callback in list(self._state_change_callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")

    # --- Visibility -------------------------------------------------------------------

    def _hover(self, transition: Hover):
        self._ui_state = Hovering()

    def _unhover(self, transition: Unhover):
        self._ui_state = Closed()

    def _open(self, transition: Open):
        if self.has_pending_retry and transition.reason in RETRY_OPEN_REASONS:
            prompt = replace(self._prompt_state_cache,
                             error_message=self._pending_retry.error_message)
            self._pending_retry = None
            self._ui_state = Opened(PromptContent(prompt))
            logger.info("Opened with pending retry error restored into prompt")
            return

        if isinstance(self._ui_state, ClosedProcessing):
            self._ui_state = Opened(ProcessingContent(self._ui_state.processing))
            return

        self._ui_state = Opened(PromptContent(self._prompt_state_cache))

    def _close(self, transition: Close):
        content = self._ui_state.content
        if isinstance(content, PromptContent):
            self._prompt_state_cache = content.state
            self._ui_state = Closed()
        elif isinstance(content, ProcessingContent):
            self._ui_state = ClosedProcessing(content.state)
        else:
            # Result, menu and dictation do not survive closing
            self._ui_state = Closed()

    def _dismiss(self, transition: Dismiss):
        self._prompt_state_cache = PromptSubstate()
        self._pending_retry = None
        self._ui_state = Closed()

    # --- Prompt -----------------------------------------------------------------------

    def _edit_prompt(self, **changes):
        prompt = self._ui_state.content.state
        self._ui_state = Opened(PromptContent(replace(prompt, **changes)))

    def _toggle_agent_picker(self, transition: ToggleAgentPicker):
        prompt = self._ui_state.content.state
        self._edit_prompt(show_agent_picker=not prompt.show_agent_picker)

    def _attach_image(self, transition: AttachImage):
        images = self._ui_state.content.state.attached_images
        if transition.image in images:
            logger.debug(f"Image {transition.image.id} already attached")
            return
        self._edit_prompt(attached_images=images + (transition.image,))

    def _remove_image(self, transition: RemoveImage):
        images = self._ui_state.content.state.attached_images
        self._edit_prompt(
            attached_images=tuple(img for img in images if img.id != transition.image_id)
        )

    # --- Processing -------------------------------------------------------------------

    def _start_processing(self, transition: StartProcessing):
        processing = ProcessingSubstate(session_id=transition.session_id, start_time=self._clock())
        self._ui_state = Opened(ProcessingContent(processing))

    def _update_streaming_text(self, transition: UpdateStreamingText):
        if isinstance(self._ui_state, ClosedProcessing):
            self._ui_state = ClosedProcessing(
                replace(self._ui_state.processing, streaming_text=transition.text)
            )
        else:
            processing = self._ui_state.content.state
            self._ui_state = Opened(
                ProcessingContent(replace(processing, streaming_text=transition.text))
            )

    def _complete_processing(self, transition: CompleteProcessing):
        processing = self.current_processing_state
        if processing is None:  # pragma: no cover - guarded
            return
        result = ResultSubstate(session_id=processing.session_id,
                                streaming_text=transition.result_text)
        self._ui_state = Opened(ResultContent(result))
        self._prompt_state_cache = self._prompt_state_cache.clear_all()

    def _cancel_processing(self, transition: CancelProcessing):
        if isinstance(self._ui_state, ClosedProcessing):
            self._ui_state = Closed()
        else:
            self._ui_state = Opened(PromptContent(self._prompt_state_cache))

    def _fail_processing(self, transition: FailProcessing):
        if isinstance(self._ui_state, ClosedProcessing):
            self._ui_state = Closed()
            if transition.can_retry:
                # Parts are filled in by the caller that owns the submission
                self._pending_retry = PendingRetryState(
                    error_message=transition.error,
                    agent_id=self._prompt_state_cache.selected_agent_id,
                )
                logger.info(f"Background job failed, retry pending: {transition.error}")
            else:
                logger.info(f"Background job failed without retry: {transition.error}")
            return

        prompt = replace(self._prompt_state_cache, error_message=transition.error)
        self._ui_state = Opened(PromptContent(prompt))

    # --- Result -----------------------------------------------------------------------

    def _show_result(self, transition: ShowResult):
        result = ResultSubstate(session_id=transition.session_id, streaming_text=transition.text)
        self._ui_state = Opened(ResultContent(result))

    def _toggle_result_expanded(self, transition: ToggleResultExpanded):
        result = self._ui_state.content.state
        self._ui_state = Opened(ResultContent(replace(result, is_expanded=not result.is_expanded)))

    def _update_follow_up_text(self, transition: UpdateFollowUpText):
        result = self._ui_state.content.state
        self._ui_state = Opened(ResultContent(replace(result, follow_up_text=transition.text)))

    # --- Menu -------------------------------------------------------------------------

    def _show_menu(self, transition: ShowMenu):
        self._ui_state = Opened(MenuContent())

    def _hide_menu(self, transition: HideMenu):
        self._ui_state = Opened(PromptContent(self._prompt_state_cache))

    # --- Dictation --------------------------------------------------------------------

    def _start_dictation(self, transition: StartDictation):
        dictation = DictationSubstate(previous_prompt_state=transition.previous_prompt)
        self._ui_state = Opened(DictatingContent(dictation))

    def _edit_dictation(self, **changes):
        dictation = self._ui_state.content.state
        self._ui_state = Opened(DictatingContent(replace(dictation, **changes)))

    def _complete_dictation(self, transition: CompleteDictation):
        prompt = self._ui_state.content.state.previous_prompt_state
        if transition.transcription is not None:
            if prompt.text == "":
                text = transition.transcription
            else:
                text = prompt.text + " " + transition.transcription
            prompt = replace(prompt, text=text)
        self._ui_state = Opened(PromptContent(prompt))

    def _cancel_dictation(self, transition: CancelDictation):
        prompt = self._ui_state.content.state.previous_prompt_state
        self._ui_state = Opened(PromptContent(prompt))

    # --- Retry ------------------------------------------------------------------------

    def _set_pending_retry(self, transition: SetPendingRetry):
        self._pending_retry = transition.retry

    def _clear_pending_retry(self, transition: ClearPendingRetry):
        self._pending_retry = None

    def _execute_pending_retry(self, transition: ExecutePendingRetry):
        self._pending_retry = self._pending_retry.increment_attempt()
        logger.info(
            f"Pending retry attempt {self._pending_retry.attempt_count}"
            f"/{PendingRetryState.MAX_ATTEMPTS}"
        )

    # --- Callbacks and history --------------------------------------------------------

    def add_state_change_callback(self, callback: Callable[[StateChangeEvent], None]):
        """Add a callback to be called on accepted transitions."""
        if callback not in self._state_change_callbacks:
            self._state_change_callbacks.append(callback)

    def remove_state_change_callback(self, callback: Callable[[StateChangeEvent], None]):
        """Remove a state change callback."""
        if callback in self._state_change_callbacks:
            self._state_change_callbacks.remove(callback)

    def get_transition_history(self, limit: int = 10) -> List[StateChangeEvent]:
        """Get recent transition history."""
        if limit <= 0:
            return []
        return self._transition_history[-limit:]

    def clear_history(self):
        """Clear transition history."""
        self._transition_history.clear()
        logger.debug("Transition history cleared")

    def get_state_info(self) -> dict:
        """Get comprehensive state information for debugging."""
        return {
            'current_state': describe_state(self._ui_state),
            'is_open': self.is_open,
            'is_processing_in_background': isinstance(self._ui_state, ClosedProcessing),
            'has_pending_retry': self.has_pending_retry,
            'retry_attempts': self._pending_retry.attempt_count if self._pending_retry else None,
            'cached_prompt_text': self._prompt_state_cache.text,
            'transition_count': len(self._transition_history),
            'last_transition': self._transition_history[-1] if self._transition_history else None,
        }
