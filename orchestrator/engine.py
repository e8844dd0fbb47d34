"""
Orchestrator — wires the Entity Store, Pipeline Stage Manager, Task Scheduler
and Rule Engine together and is the single entry point for the HTTP layer
and the CLI.

Writes that correspond to a domain event (lead created / updated / moved,
task completed / failed) feed that event to the Rule Engine after the write
commits.
"""
import logging
from typing import Dict, List, Optional

from orchestrator.errors import OrchestratorError, ValidationError
from orchestrator.pipeline.stages import PipelineStageManager
from orchestrator.rules.actions import normalize_action
from orchestrator.rules.conditions import parse_condition
from orchestrator.rules.engine import Event, RuleEngine
from orchestrator.services import query

logger = logging.getLogger('orchestrator')

CALLBACK_STATUSES = ('completed', 'failed')


class Orchestrator:

    def __init__(self, store, pipeline, scheduler, rules, change_log=None):
        self.store = store
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.rules = rules
        self.change_log = change_log

    @classmethod
    def build(cls, store=None, dispatcher=None, notifier=None, redis_client=None,
              change_log=None, clock=None):
        """Assemble an engine from parts; anything omitted is left disabled."""
        from orchestrator.scheduler import TaskScheduler
        from orchestrator.services.store import EntityStore

        store = store or EntityStore(clock=clock)
        if change_log is not None:
            store.change_feed.subscribe(change_log)
        pipeline = PipelineStageManager(store)
        scheduler = TaskScheduler(store, pipeline=pipeline, dispatcher=dispatcher,
                                  notifier=notifier, clock=clock, redis_client=redis_client)
        rules = RuleEngine(store, scheduler, notifier=notifier)
        return cls(store, pipeline, scheduler, rules, change_log=change_log)

    @classmethod
    def build_default(cls):
        """Engine wired to the configured database, Redis, RQ and Slack."""
        from orchestrator.extensions import redis_client
        from orchestrator.services import notifications
        from orchestrator.services.change_feed import RedisChangeLog
        from orchestrator.services.workflow_executor import WorkflowDispatcher

        return cls.build(
            dispatcher=WorkflowDispatcher(),
            notifier=notifications,
            redis_client=redis_client,
            change_log=RedisChangeLog(redis_client),
        )

    # ── Events ───────────────────────────────────────────────────────────────

    def submit_event(self, data) -> List[Dict]:
        event = data if isinstance(data, Event) else Event.from_dict(data)
        return [f.to_dict() for f in self.rules.handle_event(event)]

    def _fire(self, event_type, lead_id=None, task_id=None, payload=None) -> List[Dict]:
        """Internal events: a rule failure never undoes the write that raised the event."""
        try:
            return self.submit_event(Event(event_type, lead_id=lead_id, task_id=task_id,
                                           payload=payload or {}))
        except OrchestratorError:
            logger.error("Rule pass for %s failed", event_type, exc_info=True,
                         extra={'event_type': event_type, 'lead_id': lead_id, 'task_id': task_id})
            return []

    # ── Leads ────────────────────────────────────────────────────────────────

    def create_lead(self, data: Dict):
        lead = self.store.create_lead(data)
        firings = self._fire('lead_created', lead_id=lead.id,
                             payload={'first_contact': True, 'source': lead.source})
        return lead, firings

    def update_lead(self, lead_id: str, changes: Dict):
        if 'status' in changes:
            raise ValidationError("Lead status changes go through the transition endpoint")
        lead = self.store.update_lead(lead_id, changes)
        firings = self._fire('lead_updated', lead_id=lead.id,
                             payload={'changed_fields': sorted(changes)})
        return lead, firings

    def transition_lead(self, lead_id: str, new_status: str, correction: bool = False):
        previous = self.store.get_lead(lead_id).status
        lead = self.pipeline.transition_lead(lead_id, new_status, correction=correction)
        firings = self._fire('lead_status_changed', lead_id=lead.id, payload={
            'from_status': previous, 'to_status': new_status, 'correction': correction,
        })
        return lead, firings

    def list_leads(self, lead_filter=None, sort=None):
        return query.list_leads(self.store, lead_filter, sort)

    # ── Tasks ────────────────────────────────────────────────────────────────

    def create_task(self, data: Dict):
        return self.scheduler.schedule(data)

    def list_tasks(self, task_filter=None, sort=None):
        return query.list_tasks(self.store, task_filter, sort)

    def executor_callback(self, task_id: str, status: str, actual_duration: Optional[float] = None,
                          error: Optional[str] = None):
        """Completion report from the workflow executor."""
        if status not in CALLBACK_STATUSES:
            raise ValidationError(f"Callback status must be one of {CALLBACK_STATUSES}, got {status!r}")
        if status == 'completed':
            task = self.scheduler.complete(task_id, actual_duration)
            firings = self._fire('task_completed', lead_id=task.target_entity, task_id=task.id,
                                 payload={'actual_duration': task.actual_duration})
        else:
            task = self.scheduler.fail(task_id, error or 'workflow executor reported failure')
            firings = self._fire('task_failed', lead_id=task.target_entity, task_id=task.id, payload={
                'error': task.error_message,
                'retry_count': task.retry_count,
                'exhausted': task.next_retry_at is None,
            })
        return task, firings

    # ── Rules ────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_rule(data: Dict):
        for text in data.get('conditions') or []:
            parse_condition(text)
        for action in data.get('actions') or []:
            normalize_action(action)

    def create_rule(self, data: Dict):
        self._check_rule(data)
        return self.store.create_rule(data)

    def update_rule(self, rule_id: str, changes: Dict):
        self._check_rule(changes)
        return self.store.update_rule(rule_id, changes)

    # ── Reporting ────────────────────────────────────────────────────────────

    def stage_snapshot(self):
        return query.get_stage_snapshot(self.pipeline)

    def stats(self) -> Dict:
        leads = self.store.list_leads()
        stats = self.scheduler.stats()
        stats['total_leads'] = len(leads)
        stats['active_rules'] = len(self.store.list_rules(active_only=True))
        return stats

    def recent_changes(self, limit: int = 50) -> List[Dict]:
        if self.change_log is None:
            return []
        return self.change_log.recent(limit)
