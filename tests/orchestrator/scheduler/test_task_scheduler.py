"""Tests for the AutomatedTask state machine, retry/backoff and reconciliation."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from orchestrator.config import TASK_STATUSES
from orchestrator.errors import InvalidTransition, RetryExhausted, ValidationError
from orchestrator.scheduler import TaskScheduler, backoff_seconds
from orchestrator.scheduler.task_scheduler import TRANSITIONS


def _run_and_fail(scheduler, task_id, error='executor timeout'):
    scheduler.start(task_id)
    return scheduler.fail(task_id, error)


class TestTransitionTable:

    def test_all_states_known(self):
        for sources, target in TRANSITIONS.values():
            assert sources <= set(TASK_STATUSES)
            assert target in TASK_STATUSES

    def test_terminal_completed_has_no_way_out(self):
        assert not any('completed' in sources for sources, _ in TRANSITIONS.values())


class TestBackoff:

    def test_doubles_and_caps(self):
        assert backoff_seconds(0, base=60, cap=3600) == 60
        assert backoff_seconds(1, base=60, cap=3600) == 120
        assert backoff_seconds(10, base=60, cap=3600) == 3600

    def test_monotonic(self):
        delays = [backoff_seconds(n, base=30, cap=1000) for n in range(12)]
        assert delays == sorted(delays)


class TestSchedule:

    def test_due_task_is_pending(self, make_task):
        assert make_task().status == 'pending'

    def test_future_task_is_scheduled(self, make_task, clock):
        task = make_task(scheduled_at=clock.now + timedelta(minutes=30))
        assert task.status == 'scheduled'

    def test_iso_scheduled_at_with_offset(self, make_task):
        task = make_task(scheduled_at='2026-01-15T14:00:00+04:00')
        assert task.scheduled_at.hour == 10
        assert task.status == 'scheduled'

    def test_payload_is_typed_and_linked_to_lead(self, make_task, make_lead):
        lead = make_lead()
        task = make_task(type='whatsapp_sequence', target_entity=lead.id,
                         metadata={'sequenceStep': 1, 'totalSteps': 3})
        assert task.payload['type'] == 'whatsapp_sequence'
        assert task.payload['lead_id'] == lead.id
        assert task.payload['total_steps'] == 3
        assert task.workflow_id == 'whatsapp-sequence'

    @pytest.mark.parametrize('overrides', [
        {'name': ''},
        {'type': 'carrier_pigeon'},
        {'priority': 'urgent'},
        {'max_retries': -1},
        {'max_retries': True},
        {'estimated_duration': 0},
        {'estimated_duration': 0.5},
        {'scheduled_at': 'next tuesday'},
    ])
    def test_rejects_bad_input(self, make_task, overrides):
        with pytest.raises(ValidationError):
            make_task(**overrides)


class TestLifecycle:

    def test_start_sets_times_and_dispatches(self, scheduler, make_task, dispatcher, clock):
        task = make_task()
        started = scheduler.start(task.id)
        assert started.status == 'in_progress'
        assert started.started_at == clock.now
        assert started.attempt_started_at == clock.now
        dispatcher.dispatch.assert_called_once()
        assert dispatcher.dispatch.call_args[0][0].id == task.id

    def test_start_requires_pending(self, scheduler, make_task, clock):
        task = make_task(scheduled_at=clock.now + timedelta(hours=1))
        with pytest.raises(InvalidTransition):
            scheduler.start(task.id)

    def test_dispatch_error_does_not_block_start(self, scheduler, make_task, dispatcher):
        dispatcher.dispatch.side_effect = ConnectionError("redis down")
        assert scheduler.start(make_task().id).status == 'in_progress'

    def test_complete_measures_duration(self, scheduler, make_task, clock):
        task = make_task()
        scheduler.start(task.id)
        clock.advance(minutes=12)
        done = scheduler.complete(task.id)
        assert done.status == 'completed'
        assert done.completed_at == clock.now
        assert done.actual_duration == 12

    def test_complete_with_reported_duration(self, scheduler, make_task):
        task = make_task()
        scheduler.start(task.id)
        assert scheduler.complete(task.id, actual_duration=7).actual_duration == 7

    def test_complete_requires_in_progress(self, scheduler, make_task):
        with pytest.raises(InvalidTransition):
            scheduler.complete(make_task().id)

    def test_completed_followup_advances_lead(self, scheduler, make_task, make_lead, store):
        lead = make_lead(status='new')
        task = make_task(target_entity=lead.id)
        scheduler.start(task.id)
        scheduler.complete(task.id)
        assert store.get_lead(lead.id).status == 'contacted'

    def test_payload_stage_overrides_default(self, scheduler, make_task, make_lead, store):
        lead = make_lead(status='contacted')
        task = make_task(type='document_generation', target_entity=lead.id,
                         metadata={'advance_lead_to': 'viewing_scheduled'})
        scheduler.start(task.id)
        scheduler.complete(task.id)
        assert store.get_lead(lead.id).status == 'viewing_scheduled'

    def test_completion_never_moves_lead_backward(self, scheduler, make_task, make_lead, store):
        lead = make_lead(status='negotiating')
        task = make_task(target_entity=lead.id)
        scheduler.start(task.id)
        assert scheduler.complete(task.id).status == 'completed'
        assert store.get_lead(lead.id).status == 'negotiating'


class TestFailureAndRetry:

    def test_failure_schedules_backoff(self, scheduler, make_task, clock):
        task = make_task()
        failed = _run_and_fail(scheduler, task.id)
        assert failed.status == 'failed'
        assert failed.retry_count == 1
        assert failed.next_retry_at == clock.now + timedelta(seconds=60)
        assert failed.error_message == 'executor timeout'

    def test_retry_count_exhaustion(self, scheduler, make_task, clock, notifier):
        task = make_task(max_retries=3)

        for attempt in range(3):
            failed = _run_and_fail(scheduler, task.id)
            if attempt < 2:
                assert failed.next_retry_at is not None
                clock.advance(hours=2)
                assert scheduler.reconcile().retried == [task.id]

        assert failed.status == 'failed'
        assert failed.retry_count == 3
        assert failed.next_retry_at is None
        notifier.notify_task_exhausted.assert_called_once()

        clock.advance(days=1)
        result = scheduler.reconcile()
        assert result.retried == []
        assert scheduler.store.get_task(task.id).status == 'failed'

    def test_second_failure_backs_off_longer(self, scheduler, make_task, clock):
        task = make_task()
        _run_and_fail(scheduler, task.id)
        clock.advance(seconds=61)
        scheduler.reconcile()
        second = _run_and_fail(scheduler, task.id)
        assert second.next_retry_at == clock.now + timedelta(seconds=120)

    def test_no_retry_before_due(self, scheduler, make_task, clock):
        task = make_task()
        _run_and_fail(scheduler, task.id)
        clock.advance(seconds=30)
        assert scheduler.reconcile().retried == []

    def test_zero_retry_budget(self, scheduler, make_task):
        failed = _run_and_fail(scheduler, make_task(max_retries=0).id)
        assert failed.retry_count == 0
        assert failed.next_retry_at is None

    def test_error_message_truncated(self, scheduler, make_task):
        failed = _run_and_fail(scheduler, make_task().id, error='x' * 5000)
        assert len(failed.error_message) == 2000

    def test_manual_retry_ignores_backoff(self, scheduler, make_task):
        task = make_task()
        _run_and_fail(scheduler, task.id)
        retried = scheduler.manual_retry(task.id)
        assert retried.status == 'pending'
        assert retried.next_retry_at is None
        assert retried.retry_count == 1

    def test_manual_retry_exhausted_needs_override(self, scheduler, make_task):
        task = make_task(max_retries=1)
        _run_and_fail(scheduler, task.id)
        with pytest.raises(RetryExhausted):
            scheduler.manual_retry(task.id)
        assert scheduler.manual_retry(task.id, override=True).status == 'pending'

    def test_manual_retry_requires_failed(self, scheduler, make_task):
        with pytest.raises(InvalidTransition):
            scheduler.manual_retry(make_task().id)


class TestPauseResume:

    def test_pause_and_resume(self, scheduler, make_task):
        task = make_task()
        scheduler.start(task.id)
        assert scheduler.pause(task.id).status == 'paused'
        assert scheduler.resume(task.id).status == 'pending'

    def test_repeat_calls_are_noops(self, scheduler, make_task):
        task = make_task()
        paused = scheduler.pause(task.id)
        assert scheduler.pause(task.id).version == paused.version
        resumed = scheduler.resume(task.id)
        assert scheduler.resume(task.id).version == resumed.version

    def test_cannot_pause_completed(self, scheduler, make_task):
        task = make_task()
        scheduler.start(task.id)
        scheduler.complete(task.id)
        with pytest.raises(InvalidTransition):
            scheduler.pause(task.id)

    def test_cannot_resume_failed(self, scheduler, make_task):
        task = make_task()
        _run_and_fail(scheduler, task.id)
        with pytest.raises(InvalidTransition):
            scheduler.resume(task.id)


class TestReconcile:

    def test_activates_due_scheduled_tasks(self, scheduler, make_task, clock):
        task = make_task(scheduled_at=clock.now + timedelta(minutes=10))
        assert scheduler.reconcile().activated == []
        clock.advance(minutes=11)
        assert scheduler.reconcile().activated == [task.id]
        assert scheduler.store.get_task(task.id).status == 'pending'

    def test_overdue_alert_once_per_attempt(self, scheduler, make_task, clock, notifier, store):
        task = make_task(estimated_duration=10)
        scheduler.start(task.id)
        events = []
        store.change_feed.subscribe(events.append)

        clock.advance(minutes=14)
        assert scheduler.reconcile().overdue == []
        clock.advance(minutes=2)
        assert scheduler.reconcile().overdue == [task.id]
        assert scheduler.reconcile().overdue == [task.id]

        notifier.notify_task_overdue.assert_called_once()
        assert [e.action for e in events] == ['overdue']
        assert scheduler.store.get_task(task.id).status == 'in_progress'

    def test_pausing_overdue_task_clears_alert_state(self, scheduler, make_task, clock):
        task = make_task(estimated_duration=10)
        scheduler.start(task.id)
        clock.advance(minutes=20)
        assert scheduler.reconcile().overdue == [task.id]
        assert scheduler._overdue_alerted

        scheduler.pause(task.id)
        assert scheduler._overdue_alerted == set()

    def test_overlapping_tick_is_skipped(self, scheduler):
        scheduler._tick_lock.acquire()
        try:
            assert scheduler.reconcile().skipped is True
        finally:
            scheduler._tick_lock.release()

    def test_skipped_when_another_process_holds_lock(self, store, clock):
        redis = MagicMock()
        redis.lock.return_value.acquire.return_value = False
        scheduler = TaskScheduler(store, clock=clock, redis_client=redis)
        assert scheduler.reconcile().skipped is True

    def test_redis_lock_released(self, store, clock):
        redis = MagicMock()
        redis.lock.return_value.acquire.return_value = True
        scheduler = TaskScheduler(store, clock=clock, redis_client=redis)
        assert scheduler.reconcile().skipped is False
        redis.lock.return_value.release.assert_called_once()

    def test_redis_outage_falls_back_to_local_lock(self, store, clock):
        redis = MagicMock()
        redis.lock.side_effect = ConnectionError("redis down")
        scheduler = TaskScheduler(store, clock=clock, redis_client=redis)
        assert scheduler.reconcile().skipped is False


class TestStats:

    def test_counts_and_average(self, scheduler, make_task, clock):
        a, b, c = make_task(), make_task(), make_task()
        for task, minutes in ((a, 10), (b, 20)):
            scheduler.start(task.id)
            scheduler.complete(task.id, actual_duration=minutes)
        scheduler.start(c.id)
        scheduler.fail(c.id, 'boom')
        make_task()

        stats = scheduler.stats()
        assert stats['total_tasks'] == 4
        assert stats['completed_tasks'] == 2
        assert stats['failed_tasks'] == 1
        assert stats['pending_tasks'] == 1
        assert stats['average_task_duration'] == 15.0
        assert stats['by_status']['paused'] == 0
