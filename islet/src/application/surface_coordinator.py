"""
Surface Coordinator for Islet.

Owns the surface state machine and connects it to the Qt presentation layer
and to the external job runner. The coordinator carries the caller-side
duties the state machine does not own: generating session ids, holding image
payloads, assembling prompt parts and filling in retry records.
"""

import base64
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from ..domain.models.surface_state import (
    Hovering,
    ImagePart,
    ImageRef,
    MenuContent,
    OpenReason,
    PendingRetryState,
    PromptPart,
    PromptSubstate,
    TextPart,
    content_name,
    describe_state,
)
from ..domain.models.transitions import (
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
    StartDictation,
    StartProcessing,
    StartTranscribing,
    StateChangeEvent,
    ToggleAgentPicker,
    ToggleResultExpanded,
    Transition,
    Unhover,
    UpdateAudioLevel,
    UpdatePromptText,
    UpdateStreamingText,
    transition_name,
)
from ..domain.services.state_machine import (
    DEFAULT_HISTORY_LIMIT,
    RETRY_OPEN_REASONS,
    SurfaceStateMachine,
)
from ..infrastructure.logging.logging_config import log_performance

logger = logging.getLogger("islet.coordinator")

NEW_SESSION_COMMAND = "/new"


@dataclass(frozen=True)
class AttachedImage:
    """An attached image with its payload; the state machine only sees ``ref``."""
    data: bytes
    media_type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode('ascii')

    @property
    def ref(self) -> ImageRef:
        return ImageRef(id=self.id, media_type=self.media_type, data_size=len(self.data))


@dataclass(frozen=True)
class Submission:
    """Work handed to the external job runner."""
    session_id: str
    parts: Tuple[PromptPart, ...]
    agent_id: Optional[str] = None
    attempt: int = 0


class SurfaceCoordinator(QObject):
    """
    Single owner of the surface state machine.

    Responsibilities:
    - Dispatch transitions and report the outcome through Qt signals
    - Keep image payloads alongside the refs stored in the prompt
    - Build submissions for the job runner and resolve its callbacks
    - Populate and replay pending retries for failed background jobs
    """

    state_changed = pyqtSignal(object)        # StateChangeEvent
    transition_rejected = pyqtSignal(str, str)  # transition name, state name
    status_changed = pyqtSignal(str)          # 'closed' or 'opened'
    submission_ready = pyqtSignal(object)     # Submission

    def __init__(self, settings_manager=None, state_machine: Optional[SurfaceStateMachine] = None):
        super().__init__()
        if settings_manager is None:
            from ..infrastructure.storage.settings_manager import settings as settings_manager
        self._settings = settings_manager
        self._state_machine = state_machine or SurfaceStateMachine(
            history_limit=self._settings.get('surface.history_limit', DEFAULT_HISTORY_LIMIT)
        )
        # Payloads by image id; the prompt's refs decide which ones are live
        self._image_payloads: Dict[str, AttachedImage] = {}
        self._active_submission: Optional[Submission] = None
        self._status = self.status

        self._state_machine.add_state_change_callback(self._on_state_changed)
        logger.info("SurfaceCoordinator created")

    # --- Dispatch -----------------------------------------------------------------

    @property
    def state_machine(self) -> SurfaceStateMachine:
        return self._state_machine

    def dispatch(self, transition: Transition) -> bool:
        """
        Apply a transition.

        ``transition_rejected`` is emitted only when the transition is not
        valid from the current state; a valid transition without effect
        returns False quietly.
        """
        valid = self._state_machine.can_apply(transition)
        if self._state_machine.apply(transition):
            return True
        if not valid:
            self.transition_rejected.emit(
                transition_name(transition), describe_state(self._state_machine.ui_state)
            )
        return False

    def _referenced_image_ids(self) -> Set[str]:
        """Image ids any prompt the surface can still return to refers to."""
        prompts = [
            self._state_machine.current_prompt_state,
            self._state_machine.prompt_state_cache,
        ]
        dictation = self._state_machine.current_dictation_state
        if dictation is not None:
            prompts.append(dictation.previous_prompt_state)
        return {ref.id for prompt in prompts if prompt is not None for ref in prompt.attached_images}

    def _prune_image_payloads(self):
        referenced = self._referenced_image_ids()
        for image_id in [i for i in self._image_payloads if i not in referenced]:
            del self._image_payloads[image_id]
            logger.debug(f"Dropped payload for image {image_id}")

    def _on_state_changed(self, event: StateChangeEvent):
        self._prune_image_payloads()
        self.state_changed.emit(event)
        status = self.status
        if status != self._status:
            self._status = status
            self.status_changed.emit(status)

    # --- Projections --------------------------------------------------------------

    @property
    def status(self) -> str:
        return "opened" if self._state_machine.is_open else "closed"

    @property
    def content_type_name(self) -> str:
        """Content shown by the view; dictation renders inside the prompt view."""
        content = self._state_machine.content_type
        if content is None:
            return "prompt"
        name = content_name(content)
        return "prompt" if name == "dictating" else name

    @property
    def is_hovering(self) -> bool:
        return isinstance(self._state_machine.ui_state, Hovering)

    @property
    def shows_compact_processing(self) -> bool:
        return self._state_machine.background_processing_state is not None

    @property
    def background_processing_text(self) -> str:
        background = self._state_machine.background_processing_state
        return background.streaming_text if background else ""

    @property
    def display_text(self) -> Optional[str]:
        result = self._state_machine.current_result_state
        if result is not None:
            return result.streaming_text
        processing = self._state_machine.current_processing_state
        return processing.streaming_text if processing else None

    @property
    def attached_images(self) -> List[AttachedImage]:
        """Payloads for the images shown in the current prompt, in prompt order."""
        prompt = self._state_machine.current_prompt_state
        if prompt is None:
            return []
        return [self._image_payloads[ref.id] for ref in prompt.attached_images
                if ref.id in self._image_payloads]

    @property
    def active_submission(self) -> Optional[Submission]:
        return self._active_submission

    # --- Visibility ----------------------------------------------------------------

    def hover(self) -> bool:
        return self.dispatch(Hover())

    def unhover(self) -> bool:
        return self.dispatch(Unhover())

    def open(self, reason: OpenReason = OpenReason.UNKNOWN) -> bool:
        if (self._state_machine.has_pending_retry
                and reason in RETRY_OPEN_REASONS
                and not self._settings.get('surface.retry_on_reopen', True)):
            logger.info("Discarding pending retry, retry on reopen is disabled")
            self.dispatch(ClearPendingRetry())

        if not self.dispatch(Open(reason)):
            return False

        prompt = self._state_machine.current_prompt_state
        default_agent = self._settings.get('surface.default_agent_id')
        if prompt is not None and prompt.selected_agent_id is None and default_agent:
            self.dispatch(SelectAgent(default_agent))
        return True

    def close(self) -> bool:
        return self.dispatch(Close())

    def dismiss(self) -> bool:
        """Hard abort. The caller cancels any running job before or after this."""
        self._active_submission = None
        return self.dispatch(Dismiss())

    def toggle_menu(self) -> bool:
        if isinstance(self._state_machine.content_type, MenuContent):
            return self.dispatch(HideMenu())
        return self.dispatch(ShowMenu())

    def toggle_expanded(self) -> bool:
        return self.dispatch(ToggleResultExpanded())

    # --- Prompt editing ------------------------------------------------------------

    def set_prompt_text(self, text: str) -> bool:
        return self.dispatch(UpdatePromptText(text))

    def select_agent(self, agent_id: Optional[str]) -> bool:
        return self.dispatch(SelectAgent(agent_id))

    def clear_agent(self) -> bool:
        return self.dispatch(SelectAgent(None))

    def toggle_agent_picker(self) -> bool:
        return self.dispatch(ToggleAgentPicker())

    def attach_image(self, data: bytes, media_type: str) -> Optional[AttachedImage]:
        image = AttachedImage(data=data, media_type=media_type)
        if not self.dispatch(AttachImage(image.ref)):
            return None
        self._image_payloads[image.id] = image
        logger.debug(f"Attached {media_type} image ({len(data)} bytes)")
        return image

    def remove_image(self, image_id: str) -> bool:
        return self.dispatch(RemoveImage(image_id))

    def clear_images(self) -> bool:
        return self.dispatch(ClearImages())

    # --- Submission ----------------------------------------------------------------

    def _build_parts(self, prompt: PromptSubstate) -> Tuple[PromptPart, ...]:
        """Text first, then the prompt's images in the order they were attached."""
        parts: List[PromptPart] = []
        if prompt.trimmed_text:
            parts.append(TextPart(prompt.trimmed_text))
        for ref in prompt.attached_images:
            image = self._image_payloads.get(ref.id)
            if image is None:
                logger.warning(f"No payload for attached image {ref.id}, skipping it")
                continue
            parts.append(ImagePart(base64=image.base64, media_type=image.media_type))
        return tuple(parts)

    def submit_prompt(self) -> Optional[Submission]:
        """
        Start processing the current prompt.

        Returns:
            The submission handed to the runner, or None if nothing was submitted
        """
        prompt = self._state_machine.current_prompt_state
        if prompt is None or prompt.is_empty:
            return None

        if prompt.trimmed_text.lower() == NEW_SESSION_COMMAND:
            self.start_new_session()
            return None

        if prompt.error_message is not None:
            self.dispatch(ClearError())
        submission = Submission(
            session_id=str(uuid.uuid4()),
            parts=self._build_parts(prompt),
            agent_id=prompt.selected_agent_id,
        )
        if not self.dispatch(StartProcessing(submission.session_id)):
            return None

        self._active_submission = submission
        logger.info(f"Submitting prompt with {len(submission.parts)} part(s), session {submission.session_id}")
        self.submission_ready.emit(submission)
        return submission

    def on_streaming_text(self, text: str) -> bool:
        return self.dispatch(UpdateStreamingText(text))

    def on_processing_completed(self, result_text: str) -> bool:
        processing = self._state_machine.current_processing_state
        if not self.dispatch(CompleteProcessing(result_text)):
            return False
        log_performance("processing", processing.elapsed_since(self._state_machine.now()),
                        {"session_id": processing.session_id})
        self._active_submission = None
        if self._state_machine.pending_retry is not None:
            # A successful run supersedes the failed one
            self.dispatch(ClearPendingRetry())
        return True

    def on_processing_failed(self, error: str, retryable: bool) -> bool:
        """
        Resolve a runner failure.

        A background failure leaves a retry record; the state machine creates it
        without parts, so the submission's parts are threaded in here.
        """
        background = self._state_machine.background_processing_state is not None
        submission = self._active_submission
        if not self.dispatch(FailProcessing(error=error, can_retry=retryable)):
            return False

        self._active_submission = None
        pending = self._state_machine.pending_retry
        if background and retryable and pending is not None and submission is not None:
            self.dispatch(SetPendingRetry(replace(
                pending,
                parts=submission.parts,
                agent_id=submission.agent_id,
                attempt_count=submission.attempt,
            )))
            logger.info("Background error occurred, will retry when summoned")
        return True

    def cancel_processing(self) -> bool:
        """Mark processing cancelled. The runner job is cancelled by the caller."""
        if not self.dispatch(CancelProcessing()):
            return False
        self._active_submission = None
        return True

    def retry_pending(self) -> Optional[Submission]:
        """
        Replay the pending retry record.

        The prompt is brought up first (a notification open does not consume
        the record) so the resubmitted job runs in the foreground.

        Returns:
            The new submission, or None when there is nothing left to retry
        """
        retry = self._state_machine.pending_retry
        if retry is None:
            return None
        if self._state_machine.current_processing_state is not None:
            logger.warning("Cannot retry while a job is still processing")
            return None
        if not retry.can_retry:
            logger.error(
                f"Retry attempts exhausted ({retry.attempt_count}/"
                f"{PendingRetryState.MAX_ATTEMPTS}): {retry.error_message}"
            )
            return None

        if self._state_machine.is_closed:
            self.dispatch(Open(OpenReason.NOTIFICATION))
        if self._state_machine.current_prompt_state is None:
            logger.warning(
                f"Cannot retry from state {describe_state(self._state_machine.ui_state)}"
            )
            return None

        self.dispatch(ExecutePendingRetry())
        retry = self._state_machine.pending_retry
        submission = Submission(
            session_id=str(uuid.uuid4()),
            parts=retry.parts,
            agent_id=retry.agent_id,
            attempt=retry.attempt_count,
        )
        self.dispatch(StartProcessing(submission.session_id))
        self._active_submission = submission
        logger.info(f"Retrying submission, attempt {retry.attempt_count}/{PendingRetryState.MAX_ATTEMPTS}")
        self.submission_ready.emit(submission)
        return submission

    def start_new_session(self) -> bool:
        """Reset everything and reopen an empty prompt."""
        self.dismiss()
        return self.dispatch(Open(OpenReason.UNKNOWN))

    def report_error(self, message: str) -> bool:
        return self.dispatch(SetError(message))

    # --- Dictation -----------------------------------------------------------------

    def start_dictation(self) -> bool:
        prompt = self._state_machine.current_prompt_state
        if prompt is None:
            return False
        return self.dispatch(StartDictation(prompt))

    def update_audio_level(self, level: float) -> bool:
        return self.dispatch(UpdateAudioLevel(level))

    def stop_dictation(self) -> bool:
        """Recording finished; transcription is in flight."""
        return self.dispatch(StartTranscribing())

    def complete_dictation(self, transcription: Optional[str]) -> bool:
        return self.dispatch(CompleteDictation(transcription))

    def cancel_dictation(self) -> bool:
        return self.dispatch(CancelDictation())
