"""
Workflow executor dispatch — hands a started task to the external engine.

Dispatch is fire-and-forget: `dispatch()` enqueues an RQ job and returns.
The executor reports back through POST /webhook/workflow/<task_id>, which
goes through Orchestrator.executor_callback(). If the executor cannot be
reached at all, the job reports the task failed through the same path, so
the retry machinery and task_failed rules take over.
"""
import logging
import requests

from orchestrator import config
from orchestrator.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.workflow_executor')


# ── Lazy RQ queue (avoids import-time Redis connection) ─────────────────────

_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from orchestrator.extensions import redis_client
        from rq import Queue
        _queue = Queue('workflows', connection=redis_client)
    return _queue


def build_request(task_dict):
    """Body POSTed to the executor."""
    return {
        'task_id': task_dict['id'],
        'workflow_id': task_dict.get('workflow_id') or task_dict.get('type'),
        'type': task_dict.get('type'),
        'priority': task_dict.get('priority'),
        'assigned_worker': task_dict.get('assigned_worker'),
        'target_entity': task_dict.get('target_entity'),
        'attempt': task_dict.get('retry_count', 0) + 1,
        'metadata': task_dict.get('metadata') or {},
    }


def send_to_executor(task_dict):
    """RQ job: POST the task to the executor through the circuit breaker."""
    task_id = task_dict['id']
    if not config.WORKFLOW_EXECUTOR_URL:
        logger.warning("WORKFLOW_EXECUTOR_URL not set — task %s not sent", task_id)
        return False

    headers = {}
    if config.WORKFLOW_EXECUTOR_TOKEN:
        headers['Authorization'] = f'Bearer {config.WORKFLOW_EXECUTOR_TOKEN}'

    try:
        breaker = get_breaker('workflow_executor')
        resp = breaker.call(
            requests.post, config.WORKFLOW_EXECUTOR_URL,
            json=build_request(task_dict), headers=headers, timeout=15,
        )
        resp.raise_for_status()
        logger.info("Task %s dispatched to workflow '%s'", task_id, task_dict.get('workflow_id'))
        return True
    except Exception as e:
        logger.error("Dispatch of task %s failed: %s", task_id, e, exc_info=True)
        _fail_undeliverable(task_id, f"dispatch failed: {e}")
        return False


def _build_orchestrator():
    from orchestrator.engine import Orchestrator
    return Orchestrator.build_default()


def _fail_undeliverable(task_id, message):
    """Report a dispatch failure through the executor callback path."""
    from orchestrator.errors import OrchestratorError
    try:
        _build_orchestrator().executor_callback(task_id, 'failed', error=message)
    except OrchestratorError as e:
        # Task was paused or already reported on in the meantime
        logger.info("Could not mark task %s failed after dispatch error: %s", task_id, e)


class WorkflowDispatcher:
    """Scheduler-facing dispatcher; enqueues send_to_executor on RQ."""

    def __init__(self, queue_getter=None):
        self._queue_getter = queue_getter or _get_queue

    def dispatch(self, task):
        self._queue_getter().enqueue(send_to_executor, task.to_dict(), job_timeout=60)
        logger.debug("Enqueued dispatch for task %s", task.id)
