from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import START, make_attempt
from quiz_portal.constants.quiz_constants import (
    ALREADY_SUBMITTED_MESSAGE,
    AWAY_TOO_LONG_MESSAGE,
    TIME_EXPIRED_MESSAGE,
)
from quiz_portal.core.models import Answer, AwayAction, AwayResponse, SubmissionReason
from quiz_portal.core.services.attempt_session import (
    AWAY_TIMER,
    COUNTDOWN_TIMER,
    TICK_TIMER,
    Countdown,
    SessionSettings,
    SessionState,
    SessionStateError,
)


async def _active(make_controller, **options):
    controller = make_controller(**options)
    assert await controller.load() is SessionState.ACTIVE
    return controller


@pytest.mark.asyncio
async def test_load_enters_active_and_restores_saved_answers(make_controller, gateway, scheduler):
    gateway.attempt = make_attempt(answers=[Answer(question_id="q2", selected_options=["q2-f"])])
    controller = await _active(make_controller)

    assert controller.question_count == 3
    assert controller.current_question.id == "q1"
    assert controller.selected_options("q2") == ["q2-f"]
    assert controller.answered_flags() == [False, True, False]
    assert str(controller.countdown()) == "10:00"
    assert scheduler.is_scheduled(COUNTDOWN_TIMER)
    assert scheduler.is_scheduled(TICK_TIMER)


@pytest.mark.asyncio
async def test_load_failure_enters_error(make_controller, gateway):
    gateway.fail_load = True
    controller = make_controller()

    assert await controller.load() is SessionState.ERROR
    assert controller.error == "Attempt not found"


@pytest.mark.asyncio
async def test_completed_attempt_cannot_be_resumed(make_controller, gateway, scheduler):
    gateway.attempt = make_attempt(completed=True)
    controller = make_controller()

    assert await controller.load() is SessionState.ERROR
    assert controller.error == ALREADY_SUBMITTED_MESSAGE
    assert not scheduler.is_scheduled(COUNTDOWN_TIMER)


@pytest.mark.asyncio
async def test_load_twice_is_rejected(make_controller):
    controller = await _active(make_controller)
    with pytest.raises(SessionStateError):
        await controller.load()


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [1, 10, 45])
async def test_countdown_expiry_submits_once_with_time_expired(
    make_controller, gateway, scheduler, outcomes, duration
):
    gateway.attempt = make_attempt(duration=duration)
    controller = await _active(make_controller)

    scheduler.advance(duration * 60 - 0.5)
    assert controller.state is SessionState.ACTIVE
    assert controller.remaining() > timedelta(0)
    assert not controller.countdown().is_zero
    assert str(controller.countdown()) == "00:01"

    scheduler.advance(1)
    assert controller.state is SessionState.SUBMITTING
    await controller.wait_idle()

    assert controller.state is SessionState.TERMINATED
    assert gateway.submissions == [SubmissionReason.TIME_EXPIRED]
    assert outcomes[0].reason is SubmissionReason.TIME_EXPIRED
    assert outcomes[0].message == TIME_EXPIRED_MESSAGE
    assert outcomes[0].auto_submitted


@pytest.mark.asyncio
async def test_attempt_loaded_after_deadline_submits_immediately(make_controller, gateway):
    gateway.attempt = make_attempt(duration=5, start_time=START - timedelta(minutes=6))
    controller = make_controller()

    assert await controller.load() is SessionState.SUBMITTING
    await controller.wait_idle()
    assert gateway.submissions == [SubmissionReason.TIME_EXPIRED]


@pytest.mark.asyncio
async def test_low_time_warning_turns_on_under_five_minutes(make_controller, scheduler):
    changes = []
    controller = await _active(make_controller, on_change=changes.append)

    scheduler.advance(5 * 60 - 1)
    assert not controller.low_time_warning
    scheduler.advance(2)
    assert controller.low_time_warning
    assert changes


def test_countdown_formatting():
    assert str(Countdown.from_remaining(timedelta(minutes=3, seconds=7, milliseconds=100))) == "03:08"
    assert str(Countdown.from_remaining(timedelta(minutes=3))) == "03:00"
    assert str(Countdown.from_remaining(timedelta(milliseconds=1))) == "00:01"
    assert Countdown.from_remaining(timedelta(seconds=-5)).is_zero


@pytest.mark.asyncio
async def test_navigation_is_clamped_to_question_range(make_controller):
    controller = await _active(make_controller)

    assert not controller.can_go_previous
    assert controller.previous_question() is False
    for _ in range(10):
        controller.next_question()
    assert controller.current_index == 2
    assert not controller.can_go_next
    assert controller.go_to(-1) is False
    assert controller.go_to(3) is False
    assert controller.go_to(1) is True
    assert controller.current_index == 1


@pytest.mark.asyncio
async def test_answered_flag_follows_selection_and_clear(make_controller, gateway):
    controller = await _active(make_controller)

    assert not controller.is_answered("q1")
    controller.select_option("q1-a")
    assert controller.is_answered("q1")
    controller.next_question()
    controller.select_option("q2-t")
    assert controller.is_answered("q1")
    controller.clear_answer("q1")
    assert not controller.is_answered("q1")
    assert controller.answered_count == 1

    await controller.wait_idle()
    assert gateway.saved == [("q1", ["q1-a"]), ("q2", ["q2-t"]), ("q1", [])]


@pytest.mark.asyncio
async def test_selection_survives_navigation(make_controller):
    controller = await _active(make_controller)

    controller.go_to(2)
    controller.select_option("q3-b")
    controller.go_to(0)
    controller.go_to(2)

    assert controller.selected_options() == ["q3-b"]


@pytest.mark.asyncio
async def test_single_selection_by_default_even_for_multiple_choice(make_controller):
    controller = await _active(make_controller)
    controller.go_to(2)

    controller.select_option("q3-a")
    controller.select_option("q3-b")

    assert controller.selected_options() == ["q3-b"]
    with pytest.raises(ValueError):
        controller.set_answer("q3", ["q3-a", "q3-b"])


@pytest.mark.asyncio
async def test_multi_select_toggles_when_enabled(make_controller):
    controller = await _active(make_controller, settings=SessionSettings(allow_multi_select=True))
    controller.go_to(2)

    controller.select_option("q3-a")
    controller.select_option("q3-b")
    assert controller.selected_options() == ["q3-a", "q3-b"]
    controller.select_option("q3-a")
    assert controller.selected_options() == ["q3-b"]

    controller.go_to(1)
    controller.select_option("q2-t")
    controller.select_option("q2-f")
    assert controller.selected_options() == ["q2-f"]


@pytest.mark.asyncio
async def test_unknown_question_or_option_is_rejected(make_controller):
    controller = await _active(make_controller)

    with pytest.raises(ValueError):
        controller.set_answer("nope", ["q1-a"])
    with pytest.raises(ValueError):
        controller.set_answer("q1", ["q2-t"])


@pytest.mark.asyncio
async def test_failed_save_keeps_local_answer(make_controller, gateway):
    gateway.fail_save = True
    controller = await _active(make_controller)

    controller.select_option("q1-c")
    await controller.wait_idle()

    assert controller.state is SessionState.ACTIVE
    assert controller.selected_options("q1") == ["q1-c"]
    assert controller.error is None


@pytest.mark.asyncio
async def test_hidden_past_away_limit_submits_locally(make_controller, gateway, scheduler, outcomes):
    controller = await _active(make_controller)

    controller.set_visibility(True)
    assert scheduler.is_scheduled(AWAY_TIMER)
    scheduler.advance(179)
    assert controller.state is SessionState.ACTIVE

    scheduler.advance(2)
    assert controller.state is SessionState.SUBMITTING
    await controller.wait_idle()

    assert controller.state is SessionState.TERMINATED
    assert gateway.submissions == [SubmissionReason.AWAY_TOO_LONG]
    assert outcomes[0].message == AWAY_TOO_LONG_MESSAGE

    controller.set_visibility(False)
    await controller.wait_idle()
    assert gateway.away_calls == [AwayAction.START]


@pytest.mark.asyncio
async def test_short_absence_is_reported_and_cancels_fallback(make_controller, gateway, scheduler):
    controller = await _active(make_controller)

    controller.set_visibility(True)
    controller.set_visibility(True)
    scheduler.advance(30)
    controller.set_visibility(False)
    await controller.wait_idle()

    assert not scheduler.is_scheduled(AWAY_TIMER)
    assert gateway.away_calls == [AwayAction.START, AwayAction.END]
    assert controller.last_away_interval.duration_seconds == 30
    assert controller.state is SessionState.ACTIVE

    scheduler.advance(200)
    assert controller.state is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_server_away_verdict_terminates_without_submitting(make_controller, gateway, scheduler, outcomes):
    submitted = make_attempt(completed=True)
    gateway.away_end_response = AwayResponse(auto_submitted=True, attempt=submitted)
    controller = await _active(make_controller)

    controller.set_visibility(True)
    scheduler.advance(60)
    controller.set_visibility(False)
    await controller.wait_idle()

    assert controller.state is SessionState.TERMINATED
    assert gateway.submissions == []
    assert outcomes[0].reason is SubmissionReason.AWAY_TOO_LONG
    assert outcomes[0].attempt.is_completed
    assert not scheduler.is_scheduled(COUNTDOWN_TIMER)


@pytest.mark.asyncio
async def test_manual_submit_needs_confirmation(make_controller, gateway, outcomes):
    controller = await _active(make_controller)

    with pytest.raises(SessionStateError):
        controller.confirm_submit()
    controller.request_submit()
    controller.cancel_submit()
    assert not controller.confirmation_pending
    assert gateway.submissions == []

    controller.request_submit()
    controller.confirm_submit()
    await controller.wait_idle()

    assert controller.state is SessionState.TERMINATED
    assert outcomes[0].reason is SubmissionReason.MANUAL
    assert outcomes[0].message is None
    assert not outcomes[0].auto_submitted


@pytest.mark.asyncio
async def test_failed_submit_reverts_to_active_then_retry_succeeds(make_controller, gateway, scheduler, outcomes):
    gateway.fail_submit = True
    controller = await _active(make_controller)

    controller.request_submit()
    controller.confirm_submit()
    assert controller.state is SessionState.SUBMITTING
    with pytest.raises(SessionStateError):
        controller.select_option("q1-a")

    await controller.wait_idle()
    assert controller.state is SessionState.ACTIVE
    assert controller.error == "Network error"
    assert scheduler.is_scheduled(COUNTDOWN_TIMER)

    controller.select_option("q1-a")
    gateway.fail_submit = False
    controller.retry_submit()
    await controller.wait_idle()

    assert controller.state is SessionState.TERMINATED
    assert gateway.submissions == [SubmissionReason.MANUAL, SubmissionReason.MANUAL]
    assert [outcome.reason for outcome in outcomes] == [SubmissionReason.MANUAL]


@pytest.mark.asyncio
async def test_failed_time_expired_submit_is_not_retried_automatically(make_controller, gateway, scheduler):
    gateway.fail_submit = True
    controller = await _active(make_controller)

    scheduler.advance(10 * 60 + 1)
    await controller.wait_idle()
    scheduler.advance(60)
    await controller.wait_idle()

    assert controller.state is SessionState.ACTIVE
    assert gateway.submissions == [SubmissionReason.TIME_EXPIRED]

    gateway.fail_submit = False
    controller.retry_submit()
    await controller.wait_idle()
    assert gateway.submissions[-1] is SubmissionReason.TIME_EXPIRED
    assert controller.outcome.reason is SubmissionReason.TIME_EXPIRED


@pytest.mark.asyncio
async def test_terminated_session_rejects_changes(make_controller, scheduler):
    controller = await _active(make_controller)
    controller.request_submit()
    controller.confirm_submit()
    await controller.wait_idle()

    assert not scheduler.is_scheduled(TICK_TIMER)
    with pytest.raises(SessionStateError):
        controller.select_option("q1-a")
    with pytest.raises(SessionStateError):
        controller.request_submit()
    assert controller.go_to(1) is False


@pytest.mark.asyncio
async def test_close_cancels_timers_and_ignores_late_results(make_controller, gateway, scheduler, outcomes):
    controller = await _active(make_controller)
    controller.set_visibility(True)
    controller.request_submit()
    controller.confirm_submit()

    controller.close()
    await controller.wait_idle()

    assert not scheduler.is_scheduled(COUNTDOWN_TIMER)
    assert not scheduler.is_scheduled(AWAY_TIMER)
    assert controller.state is SessionState.SUBMITTING
    assert outcomes == []
