"""
Tests for the surface coordinator.

Exercises the Qt signals, payload bookkeeping, submissions and the
pending retry flow on top of a real state machine.
"""

import base64
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from islet.src.application.surface_coordinator import (
    AttachedImage,
    Submission,
    SurfaceCoordinator,
)
from islet.src.domain.models.surface_state import (
    Closed,
    ImagePart,
    OpenReason,
    PendingRetryState,
    TextPart,
)
from islet.src.domain.models.transitions import Hover, SetPendingRetry
from islet.src.domain.services.state_machine import SurfaceStateMachine


@pytest.fixture
def coordinator(qapp, settings_manager):
    return SurfaceCoordinator(settings_manager=settings_manager)


class TestAttachedImage:

    def test_base64_and_ref(self):
        image = AttachedImage(data=b"hi", media_type="image/png")
        assert image.base64 == base64.b64encode(b"hi").decode("ascii")
        assert image.ref.id == image.id
        assert image.ref.data_size == 2
        assert image.ref.media_type == "image/png"

    def test_ids_are_unique(self):
        assert AttachedImage(b"a", "image/png").id != AttachedImage(b"a", "image/png").id


class TestSignals:

    def setup_method(self):
        self.events = []
        self.rejections = []
        self.statuses = []

    def _connect(self, coordinator):
        coordinator.state_changed.connect(self.events.append)
        coordinator.transition_rejected.connect(lambda name, state: self.rejections.append((name, state)))
        coordinator.status_changed.connect(self.statuses.append)

    def test_state_changed_per_accepted_transition(self, coordinator):
        self._connect(coordinator)
        coordinator.hover()
        coordinator.open(OpenReason.HOVER)
        assert len(self.events) == 2
        assert self.events[-1].transition.reason == OpenReason.HOVER

    def test_rejection_signal(self, coordinator):
        self._connect(coordinator)
        assert coordinator.unhover() is False
        assert self.rejections == [("Unhover", "closed")]
        assert self.events == []

    def test_status_changes_only_on_flip(self, coordinator):
        self._connect(coordinator)
        coordinator.open()
        coordinator.set_prompt_text("hello")
        coordinator.close()
        assert self.statuses == ["opened", "closed"]

    def test_no_effect_is_not_a_rejection(self, coordinator):
        self._connect(coordinator)
        coordinator.open()
        coordinator.set_prompt_text("same")
        assert coordinator.set_prompt_text("same") is False
        assert self.rejections == []
        assert len(self.events) == 2

    def test_dispatch_returns_result(self, coordinator):
        assert coordinator.dispatch(Hover()) is True
        assert coordinator.dispatch(Hover()) is False
        assert coordinator.is_hovering


class TestProjections:

    def test_closed_defaults(self, coordinator):
        assert coordinator.status == "closed"
        assert coordinator.content_type_name == "prompt"
        assert not coordinator.shows_compact_processing
        assert coordinator.background_processing_text == ""
        assert coordinator.display_text is None

    def test_dictation_renders_as_prompt(self, coordinator):
        coordinator.open()
        coordinator.start_dictation()
        assert coordinator.content_type_name == "prompt"

    def test_background_processing_projection(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("question")
        coordinator.submit_prompt()
        coordinator.on_streaming_text("partial")
        assert coordinator.content_type_name == "processing"
        assert coordinator.display_text == "partial"

        coordinator.close()
        assert coordinator.status == "closed"
        assert coordinator.shows_compact_processing
        assert coordinator.background_processing_text == "partial"
        assert coordinator.content_type_name == "processing"


class TestOpen:

    def test_default_agent_applied(self, qapp, settings_manager):
        settings_manager.set('surface.default_agent_id', 'build')
        coordinator = SurfaceCoordinator(settings_manager=settings_manager)
        coordinator.open()
        assert coordinator.state_machine.current_prompt_state.selected_agent_id == 'build'

    def test_default_agent_does_not_override_choice(self, qapp, settings_manager):
        settings_manager.set('surface.default_agent_id', 'build')
        coordinator = SurfaceCoordinator(settings_manager=settings_manager)
        coordinator.open()
        coordinator.select_agent('plan')
        coordinator.close()
        coordinator.open()
        assert coordinator.state_machine.current_prompt_state.selected_agent_id == 'plan'

    def test_history_limit_from_settings(self, qapp, settings_manager):
        settings_manager.set('surface.history_limit', 2)
        coordinator = SurfaceCoordinator(settings_manager=settings_manager)
        coordinator.hover()
        coordinator.unhover()
        coordinator.hover()
        assert len(coordinator.state_machine.get_transition_history(limit=10)) == 2

    def test_retry_on_reopen_disabled_discards_record(self, qapp, settings_manager):
        settings_manager.set('surface.retry_on_reopen', False)
        coordinator = SurfaceCoordinator(settings_manager=settings_manager)
        coordinator.dispatch(SetPendingRetry(PendingRetryState("timeout")))

        assert coordinator.open(OpenReason.HOTKEY)
        assert coordinator.state_machine.pending_retry is None
        assert coordinator.state_machine.current_prompt_state.error_message is None

    def test_retry_on_reopen_enabled_surfaces_error(self, coordinator):
        coordinator.dispatch(SetPendingRetry(PendingRetryState("timeout")))
        coordinator.open(OpenReason.CLICK)
        assert coordinator.state_machine.current_prompt_state.error_message == "timeout"

    def test_toggle_menu(self, coordinator):
        coordinator.open()
        coordinator.toggle_menu()
        assert coordinator.content_type_name == "menu"
        coordinator.toggle_menu()
        assert coordinator.content_type_name == "prompt"


class TestImages:

    def test_attach_and_remove(self, coordinator):
        coordinator.open()
        image = coordinator.attach_image(b"png-bytes", "image/png")
        assert image is not None
        assert coordinator.attached_images == [image]
        assert coordinator.state_machine.current_prompt_state.attached_images == (image.ref,)

        assert coordinator.remove_image(image.id)
        assert coordinator.attached_images == []
        assert coordinator.state_machine.current_prompt_state.attached_images == ()

    def test_attach_rejected_when_closed(self, coordinator):
        assert coordinator.attach_image(b"x", "image/png") is None
        assert coordinator.attached_images == []

    def test_clear_images(self, coordinator):
        coordinator.open()
        coordinator.attach_image(b"a", "image/png")
        coordinator.attach_image(b"b", "image/jpeg")
        assert coordinator.clear_images()
        assert coordinator.attached_images == []

    def test_dismiss_drops_payloads(self, coordinator):
        coordinator.open()
        coordinator.attach_image(b"a", "image/png")
        coordinator.dismiss()
        assert coordinator.attached_images == []
        assert coordinator._image_payloads == {}
        assert coordinator.state_machine.ui_state == Closed()

    def test_payloads_survive_close_and_reopen(self, coordinator):
        coordinator.open()
        image = coordinator.attach_image(b"A", "image/png")
        coordinator.close()
        coordinator.open()

        assert coordinator.attached_images == [image]
        submission = coordinator.submit_prompt()
        assert submission.parts == (ImagePart(base64="QQ==", media_type="image/png"),)

    def test_menu_round_trip_drops_unsaved_image(self, coordinator):
        coordinator.open()
        coordinator.attach_image(b"A", "image/png")
        coordinator.toggle_menu()
        coordinator.toggle_menu()

        assert coordinator.state_machine.current_prompt_state.attached_images == ()
        assert coordinator.attached_images == []
        assert coordinator._image_payloads == {}

        coordinator.set_prompt_text("hello")
        submission = coordinator.submit_prompt()
        assert submission.parts == (TextPart("hello"),)

    def test_foreground_failure_drops_submitted_image(self, coordinator):
        coordinator.open()
        coordinator.attach_image(b"A", "image/png")
        coordinator.set_prompt_text("one")
        first = coordinator.submit_prompt()
        assert len(first.parts) == 2

        coordinator.on_processing_failed("boom", retryable=False)
        assert coordinator.state_machine.current_prompt_state.attached_images == ()

        coordinator.set_prompt_text("two")
        second = coordinator.submit_prompt()
        assert second.parts == (TextPart("two"),)

    def test_cancel_keeps_checkpointed_images_only(self, coordinator):
        coordinator.open()
        kept = coordinator.attach_image(b"K", "image/png")
        coordinator.close()
        coordinator.open()
        coordinator.attach_image(b"D", "image/jpeg")
        coordinator.set_prompt_text("question")
        coordinator.submit_prompt()

        coordinator.cancel_processing()

        assert coordinator.attached_images == [kept]
        assert set(coordinator._image_payloads) == {kept.id}

    def test_parts_follow_prompt_order(self, coordinator):
        coordinator.open()
        first = coordinator.attach_image(b"1", "image/png")
        second = coordinator.attach_image(b"2", "image/jpeg")
        third = coordinator.attach_image(b"3", "image/gif")
        coordinator.remove_image(second.id)

        submission = coordinator.submit_prompt()
        assert [part.base64 for part in submission.parts] == [first.base64, third.base64]

    def test_images_kept_through_dictation(self, coordinator):
        coordinator.open()
        image = coordinator.attach_image(b"A", "image/png")
        coordinator.start_dictation()
        coordinator.update_audio_level(0.3)
        assert image.id in coordinator._image_payloads
        coordinator.complete_dictation("caption")
        assert coordinator.attached_images == [image]

    def test_remove_unknown_image(self, coordinator):
        rejections = []
        coordinator.transition_rejected.connect(lambda name, state: rejections.append(name))
        coordinator.open()
        assert coordinator.remove_image("missing") is False
        assert rejections == []


class TestSubmission:

    def setup_method(self):
        self.submissions = []

    def test_empty_prompt_not_submitted(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("   ")
        assert coordinator.submit_prompt() is None
        assert coordinator.state_machine.current_prompt_state is not None

    def test_submit_builds_parts(self, coordinator):
        coordinator.submission_ready.connect(self.submissions.append)
        coordinator.open()
        coordinator.set_prompt_text("  describe this  ")
        coordinator.select_agent("build")
        coordinator.attach_image(b"img", "image/png")

        submission = coordinator.submit_prompt()

        assert isinstance(submission, Submission)
        assert submission.parts == (
            TextPart("describe this"),
            ImagePart(base64=base64.b64encode(b"img").decode("ascii"), media_type="image/png"),
        )
        assert submission.agent_id == "build"
        assert submission.attempt == 0
        assert self.submissions == [submission]
        assert coordinator.active_submission == submission
        assert coordinator.state_machine.current_processing_state.session_id == submission.session_id

    def test_image_only_submission(self, coordinator):
        coordinator.open()
        coordinator.attach_image(b"img", "image/png")
        submission = coordinator.submit_prompt()
        assert len(submission.parts) == 1
        assert isinstance(submission.parts[0], ImagePart)

    def test_submit_clears_error(self, coordinator):
        coordinator.open()
        coordinator.report_error("previous failure")
        coordinator.set_prompt_text("again")
        coordinator.submit_prompt()
        coordinator.cancel_processing()
        assert coordinator.state_machine.current_prompt_state.error_message is None

    def test_new_session_command(self, coordinator):
        coordinator.submission_ready.connect(self.submissions.append)
        coordinator.open()
        coordinator.set_prompt_text("draft")
        coordinator.close()
        coordinator.open()
        coordinator.set_prompt_text(" /NEW ")

        assert coordinator.submit_prompt() is None
        assert self.submissions == []
        assert coordinator.state_machine.current_prompt_state.text == ""

    @patch('islet.src.application.surface_coordinator.log_performance')
    def test_completion(self, mock_log_performance, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("question")
        coordinator.attach_image(b"img", "image/png")
        submission = coordinator.submit_prompt()

        assert coordinator.on_processing_completed("answer")
        assert coordinator.display_text == "answer"
        assert coordinator.attached_images == []
        assert coordinator.active_submission is None
        mock_log_performance.assert_called_once()
        operation, _, metadata = mock_log_performance.call_args[0]
        assert operation == "processing"
        assert metadata == {"session_id": submission.session_id}

    @patch('islet.src.application.surface_coordinator.log_performance')
    def test_completion_duration_uses_machine_clock(self, mock_log_performance, qapp, settings_manager):
        times = [datetime(2024, 5, 1, 12, 0, 0)]
        machine = SurfaceStateMachine(clock=lambda: times[-1])
        coordinator = SurfaceCoordinator(settings_manager=settings_manager, state_machine=machine)
        coordinator.open()
        coordinator.set_prompt_text("question")
        coordinator.submit_prompt()

        times.append(times[0] + timedelta(seconds=42))
        coordinator.on_processing_completed("answer")

        _, duration, _ = mock_log_performance.call_args[0]
        assert duration == 42.0

    def test_completion_rejected_without_job(self, coordinator):
        coordinator.open()
        assert coordinator.on_processing_completed("answer") is False

    def test_foreground_failure(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("question")
        coordinator.submit_prompt()
        assert coordinator.on_processing_failed("Network error", retryable=True)
        assert coordinator.state_machine.current_prompt_state.error_message == "Network error"
        assert coordinator.state_machine.pending_retry is None
        assert coordinator.active_submission is None


class TestPendingRetryFlow:

    def setup_method(self):
        self.submissions = []

    def _fail_in_background(self, coordinator, text="question"):
        coordinator.open()
        coordinator.set_prompt_text(text)
        coordinator.select_agent("build")
        submission = coordinator.submit_prompt()
        coordinator.close()
        coordinator.on_processing_failed("Connection failed", retryable=True)
        return submission

    def test_background_failure_records_submission(self, coordinator):
        submission = self._fail_in_background(coordinator)
        retry = coordinator.state_machine.pending_retry
        assert coordinator.state_machine.ui_state == Closed()
        assert retry.parts == submission.parts
        assert retry.agent_id == "build"
        assert retry.attempt_count == 0

    def test_non_retryable_background_failure(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("question")
        coordinator.submit_prompt()
        coordinator.close()
        coordinator.on_processing_failed("Bad request", retryable=False)
        assert coordinator.state_machine.pending_retry is None

    def test_retry_pending_resubmits(self, coordinator):
        original = self._fail_in_background(coordinator)
        coordinator.submission_ready.connect(self.submissions.append)

        retried = coordinator.retry_pending()

        assert retried is not None
        assert retried.parts == original.parts
        assert retried.agent_id == "build"
        assert retried.attempt == 1
        assert retried.session_id != original.session_id
        assert self.submissions == [retried]
        assert coordinator.status == "opened"
        assert coordinator.content_type_name == "processing"

    def test_retry_attempts_are_bounded(self, coordinator):
        self._fail_in_background(coordinator)
        for attempt in (1, 2, 3):
            submission = coordinator.retry_pending()
            assert submission.attempt == attempt
            coordinator.close()
            coordinator.on_processing_failed("Connection failed", retryable=True)
            assert coordinator.state_machine.pending_retry.attempt_count == attempt

        assert coordinator.retry_pending() is None
        assert not coordinator.state_machine.has_pending_retry

    def test_retry_refused_while_processing(self, coordinator):
        self._fail_in_background(coordinator)
        coordinator.retry_pending()
        assert coordinator.retry_pending() is None

    def test_retry_without_record(self, coordinator):
        assert coordinator.retry_pending() is None

    @patch('islet.src.application.surface_coordinator.log_performance')
    def test_success_clears_retry(self, mock_log_performance, coordinator):
        self._fail_in_background(coordinator)
        coordinator.retry_pending()
        coordinator.on_processing_completed("answer")
        assert coordinator.state_machine.pending_retry is None

    def test_hotkey_open_surfaces_error(self, coordinator):
        self._fail_in_background(coordinator)
        coordinator.open(OpenReason.HOTKEY)
        assert coordinator.state_machine.current_prompt_state.error_message == "Connection failed"
        assert coordinator.state_machine.pending_retry is None


class TestDictation:

    def test_dictation_round_trip(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("Hello")
        assert coordinator.start_dictation()
        assert coordinator.update_audio_level(0.4)
        assert coordinator.stop_dictation()
        assert coordinator.complete_dictation("world")
        assert coordinator.state_machine.current_prompt_state.text == "Hello world"

    def test_cancel_dictation(self, coordinator):
        coordinator.open()
        coordinator.set_prompt_text("Hello")
        coordinator.start_dictation()
        assert coordinator.cancel_dictation()
        assert coordinator.state_machine.current_prompt_state.text == "Hello"

    def test_dictation_requires_prompt(self, coordinator):
        assert coordinator.start_dictation() is False
