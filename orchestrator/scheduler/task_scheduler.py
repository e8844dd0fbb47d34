"""
Task Scheduler — the AutomatedTask state machine, retry/backoff and the
reconciliation tick.

  SCHEDULED ─activate→ PENDING ─start→ IN_PROGRESS ─complete→ COMPLETED
                                        IN_PROGRESS ─fail→ FAILED
  FAILED ─(tick, next_retry_at ≤ now)→ PENDING
  FAILED ─manual_retry→ PENDING
  PENDING | IN_PROGRESS ─pause→ PAUSED ─resume→ PENDING

Retry budget: each failure charges one attempt (retry_count += 1, never
beyond max_retries). While retry_count < max_retries the failed task
carries next_retry_at = now + backoff; once the budget is spent it stays
FAILED with next_retry_at unset, and only manual_retry(override=True) can
re-queue it.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from orchestrator import config
from orchestrator.clock import parse_timestamp
from orchestrator.errors import (
    OrchestratorError, InvalidTransition, RetryExhausted, ValidationError, ConcurrencyConflict,
)
from orchestrator.models import AutomatedTask
from orchestrator.models.payloads import parse_payload

logger = logging.getLogger('scheduler')

# operation → (allowed source statuses, target status)
TRANSITIONS = {
    'activate': ({'scheduled'}, 'pending'),
    'start':    ({'pending'}, 'in_progress'),
    'complete': ({'in_progress'}, 'completed'),
    'fail':     ({'in_progress'}, 'failed'),
    'pause':    ({'pending', 'in_progress'}, 'paused'),
    'resume':   ({'paused'}, 'pending'),
    'retry':    ({'failed'}, 'pending'),
}

RECONCILE_LOCK_KEY = 'scheduler:reconcile:lock'


def backoff_seconds(attempt: int, base: int = None, cap: int = None) -> int:
    """Delay before retry number `attempt` (0-based): base * 2**attempt, capped."""
    base = config.RETRY_BASE_SECONDS if base is None else base
    cap = config.RETRY_MAX_SECONDS if cap is None else cap
    return min(base * (2 ** attempt), cap)


def _guard(task, operation):
    allowed, target = TRANSITIONS[operation]
    if task.status not in allowed:
        raise InvalidTransition('task', task.id, task.status, target)


@dataclass
class TickResult:
    activated: List[str] = field(default_factory=list)
    retried: List[str] = field(default_factory=list)
    overdue: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict:
        return {
            'activated': self.activated,
            'retried': self.retried,
            'overdue': self.overdue,
            'skipped': self.skipped,
        }


class TaskScheduler:
    """Owns every AutomatedTask status change."""

    def __init__(self, store, pipeline=None, dispatcher=None, notifier=None,
                 clock=None, retry_base: int = None, retry_cap: int = None,
                 overrun_factor: float = None, redis_client=None):
        self.store = store
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.clock = clock or store.clock
        self.retry_base = config.RETRY_BASE_SECONDS if retry_base is None else retry_base
        self.retry_cap = config.RETRY_MAX_SECONDS if retry_cap is None else retry_cap
        self.overrun_factor = config.OVERRUN_FACTOR if overrun_factor is None else overrun_factor
        self.redis = redis_client
        self._tick_lock = threading.Lock()
        self._overdue_alerted = set()

    def backoff(self, attempt: int) -> timedelta:
        return timedelta(seconds=backoff_seconds(attempt, self.retry_base, self.retry_cap))

    # ── Creation ─────────────────────────────────────────────────────────────

    def schedule(self, data: Dict) -> AutomatedTask:
        """
        Validate and insert a task.

        Lands in PENDING when scheduled_at ≤ now (or omitted), else SCHEDULED.
        """
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("Task requires a name")

        task_type = data.get('type')
        payload = parse_payload(task_type, data.get('metadata'))

        priority = data.get('priority', 'medium')
        if priority not in config.PRIORITIES:
            raise ValidationError(f"Invalid priority '{priority}'")

        max_retries = data.get('max_retries', 3)
        if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 0:
            raise ValidationError(f"max_retries must be an integer >= 0, got {max_retries!r}")

        estimated = data.get('estimated_duration')
        if not isinstance(estimated, int) or isinstance(estimated, bool) or estimated <= 0:
            raise ValidationError(f"estimated_duration must be a whole number of minutes > 0, got {estimated!r}")

        now = self.clock()
        try:
            scheduled_at = parse_timestamp(data.get('scheduled_at')) or now
        except ValueError as e:
            raise ValidationError(f"Bad scheduled_at: {e}") from e

        target = data.get('target_entity') or payload.lead_id
        if target and not payload.lead_id:
            payload.lead_id = target

        task = AutomatedTask(
            id=data.get('id'),
            name=name,
            description=data.get('description', ''),
            type=task_type,
            status='pending' if scheduled_at <= now else 'scheduled',
            priority=priority,
            assigned_worker=data.get('assigned_worker') or '',
            target_entity=target,
            scheduled_at=scheduled_at,
            estimated_duration=estimated,
            retry_count=0,
            max_retries=max_retries,
            workflow_id=data.get('workflow_id') or task_type.replace('_', '-'),
            payload=payload.to_dict(),
        )
        task = self.store.insert_task(task)
        logger.info("Scheduled task %s '%s' (%s, %s)", task.id, task.name, task.type, task.status)
        return task

    # ── Transitions ──────────────────────────────────────────────────────────

    def activate(self, task_id: str) -> AutomatedTask:
        def apply(task):
            _guard(task, 'activate')
            task.status = 'pending'
        return self.store.update_task(task_id, apply, action='activated')

    def start(self, task_id: str) -> AutomatedTask:
        def apply(task):
            _guard(task, 'start')
            now = self.clock()
            if task.started_at is None:
                task.started_at = now
            task.attempt_started_at = now
            task.status = 'in_progress'

        task = self.store.update_task(task_id, apply, action='started')
        logger.info("Task %s started (attempt %d)", task_id, task.retry_count + 1)
        self._dispatch(task)
        return task

    def complete(self, task_id: str, actual_duration: Optional[float] = None) -> AutomatedTask:
        if actual_duration is not None and (
                not isinstance(actual_duration, (int, float)) or actual_duration < 0):
            raise ValidationError(f"actual_duration must be >= 0, got {actual_duration!r}")

        def apply(task):
            _guard(task, 'complete')
            now = self.clock()
            task.status = 'completed'
            task.completed_at = now
            task.next_retry_at = None
            if actual_duration is not None:
                task.actual_duration = int(round(actual_duration))
            elif task.attempt_started_at is not None:
                task.actual_duration = int(round((now - task.attempt_started_at).total_seconds() / 60))

        task = self.store.update_task(task_id, apply, action='completed')
        self._forget_overdue(task_id)
        logger.info("Task %s completed in %s min", task_id, task.actual_duration)
        self._advance_target_lead(task)
        return task

    def fail(self, task_id: str, error: str) -> AutomatedTask:
        outcome = {}

        def apply(task):
            _guard(task, 'fail')
            now = self.clock()
            attempt = task.retry_count
            task.status = 'failed'
            task.error_message = (error or 'unknown error')[:2000]
            if task.retry_count < task.max_retries:
                task.retry_count += 1
            if task.retry_count < task.max_retries:
                task.next_retry_at = now + self.backoff(attempt)
                outcome['exhausted'] = False
            else:
                task.next_retry_at = None
                outcome['exhausted'] = True

        task = self.store.update_task(task_id, apply, action='failed')
        self._forget_overdue(task_id)
        if outcome['exhausted']:
            logger.warning("Task %s failed permanently (%d/%d): %s",
                           task_id, task.retry_count, task.max_retries, task.error_message)
            self._notify('notify_task_exhausted', task)
        else:
            logger.info("Task %s failed (%d/%d), retry at %s: %s", task_id,
                        task.retry_count, task.max_retries,
                        task.next_retry_at.isoformat(), task.error_message)
        return task

    def pause(self, task_id: str) -> AutomatedTask:
        def apply(task):
            if task.status == 'paused':
                return False
            _guard(task, 'pause')
            task.status = 'paused'
        task = self.store.update_task(task_id, apply, action='paused')
        self._forget_overdue(task_id)
        return task

    def resume(self, task_id: str) -> AutomatedTask:
        def apply(task):
            if task.status == 'pending':
                return False
            _guard(task, 'resume')
            task.status = 'pending'
        return self.store.update_task(task_id, apply, action='resumed')

    def manual_retry(self, task_id: str, override: bool = False) -> AutomatedTask:
        """
        Re-queue a FAILED task now, ignoring next_retry_at.

        An exhausted task (retry_count ≥ max_retries) needs override=True.
        """
        def apply(task):
            _guard(task, 'retry')
            if task.retry_count >= task.max_retries and not override:
                raise RetryExhausted(task.id, task.retry_count, task.max_retries)
            task.status = 'pending'
            task.next_retry_at = None

        task = self.store.update_task(task_id, apply, action='retried',
                                      data={'manual': True, 'override': override})
        if override:
            logger.warning("Task %s manually retried past its budget (%d/%d)",
                           task_id, task.retry_count, task.max_retries)
        return task

    # ── Reconciliation tick ─────────────────────────────────────────────────

    def reconcile(self) -> TickResult:
        """
        One reconciliation pass: activate due SCHEDULED tasks, re-queue
        FAILED tasks whose next_retry_at has passed, flag overdue
        IN_PROGRESS tasks. Overlapping calls return a skipped result.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Reconciliation already running — skipping tick")
            return TickResult(skipped=True)

        redis_lock = None
        try:
            redis_lock = self._acquire_redis_lock()
            if redis_lock is False:
                logger.info("Reconciliation running in another process — skipping tick")
                return TickResult(skipped=True)

            result = TickResult()
            now = self.clock()
            self._activate_due(now, result)
            self._retry_due(now, result)
            self._detect_overdue(now, result)

            if result.activated or result.retried or result.overdue:
                logger.info("Tick: activated=%d retried=%d overdue=%d",
                            len(result.activated), len(result.retried), len(result.overdue))
            return result
        finally:
            if redis_lock:
                try:
                    redis_lock.release()
                except Exception:
                    logger.warning("Could not release reconciliation lock", exc_info=True)
            self._tick_lock.release()

    def _acquire_redis_lock(self):
        """Returns the held lock, False if another process holds it, None if Redis is unusable."""
        if self.redis is None:
            return None
        try:
            lock = self.redis.lock(RECONCILE_LOCK_KEY, timeout=config.RECONCILE_LOCK_TIMEOUT)
            return lock if lock.acquire(blocking=False) else False
        except Exception:
            logger.warning("Redis unavailable for reconciliation lock — using local lock only",
                           exc_info=True)
            return None

    def _activate_due(self, now, result):
        for task in self.store.list_tasks(['scheduled']):
            if task.scheduled_at > now:
                continue

            def apply(row):
                if row.status != 'scheduled' or row.scheduled_at > now:
                    return False
                row.status = 'pending'

            try:
                updated = self.store.update_task(task.id, apply, action='activated')
            except ConcurrencyConflict:
                logger.warning("Task %s activation lost a write race; next tick retries", task.id)
                continue
            if updated.status == 'pending':
                result.activated.append(task.id)

    def _retry_due(self, now, result):
        for task in self.store.list_tasks(['failed']):
            if task.next_retry_at is None or task.next_retry_at > now:
                continue

            def apply(row):
                if (row.status != 'failed' or row.next_retry_at is None
                        or row.next_retry_at > now or row.retry_count >= row.max_retries):
                    return False
                row.status = 'pending'
                row.next_retry_at = None

            try:
                updated = self.store.update_task(task.id, apply, action='retried',
                                                 data={'manual': False})
            except ConcurrencyConflict:
                logger.warning("Task %s auto-retry lost a write race; next tick retries", task.id)
                continue
            if updated.status == 'pending':
                result.retried.append(task.id)
                logger.info("Task %s re-queued for attempt %d/%d",
                            task.id, updated.retry_count + 1, updated.max_retries)

    def _forget_overdue(self, task_id):
        self._overdue_alerted = {k for k in self._overdue_alerted if k[0] != task_id}

    def _detect_overdue(self, now, result):
        for task in self.store.list_tasks(['in_progress']):
            began = task.attempt_started_at or task.started_at
            if began is None:
                continue
            elapsed = now - began
            limit = timedelta(minutes=task.estimated_duration * self.overrun_factor)
            if elapsed <= limit:
                continue

            result.overdue.append(task.id)
            elapsed_minutes = elapsed.total_seconds() / 60
            key = (task.id, began)
            if key in self._overdue_alerted:
                continue
            self._overdue_alerted.add(key)
            logger.warning("Task %s overdue: %.0f min elapsed, estimated %d min",
                           task.id, elapsed_minutes, task.estimated_duration)
            self.store.publish('task', task.id, 'overdue', status=task.status,
                               data={'elapsed_minutes': round(elapsed_minutes, 1)})
            self._notify('notify_task_overdue', task, elapsed_minutes)

    # ── Reporting ────────────────────────────────────────────────────────────

    def stats(self) -> Dict:
        tasks = self.store.list_tasks()
        durations = [t.actual_duration for t in tasks if t.actual_duration]
        by_status = {status: 0 for status in config.TASK_STATUSES}
        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
        return {
            'total_tasks': len(tasks),
            'completed_tasks': by_status['completed'],
            'failed_tasks': by_status['failed'],
            'pending_tasks': by_status['pending'],
            'by_status': by_status,
            'average_task_duration': round(sum(durations) / max(1, len(durations)), 1),
        }

    # ── Side effects ─────────────────────────────────────────────────────────

    def _dispatch(self, task):
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(task)
        except Exception:
            logger.error("Could not enqueue task %s for the workflow executor", task.id, exc_info=True)

    def _advance_target_lead(self, task):
        if self.pipeline is None or not task.target_entity:
            return
        target = (task.payload or {}).get('advance_lead_to') or config.TASK_COMPLETION_STAGE.get(task.type)
        if not target:
            return
        try:
            self.pipeline.advance_lead(task.target_entity, target)
        except OrchestratorError:
            logger.error("Task %s completed but lead %s could not be advanced to '%s'",
                         task.id, task.target_entity, target, exc_info=True)

    def _notify(self, method, *args):
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, method)(*args)
        except Exception:
            logger.error("Notifier %s failed", method, exc_info=True)
