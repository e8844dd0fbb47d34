"""
Automation Rule Engine — evaluates active rules against one event.

For each event:
  1. pick active rules whose trigger is the event type (or '*')
  2. snapshot the event's Lead / Task / payload once
  3. a rule matches when every condition holds on that snapshot
  4. run the matching rule's actions in declared order

Actions never re-enter the engine: a cascade needs a new event. A rule with
a malformed condition or action is logged and skipped; other rules still run.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from orchestrator.errors import OrchestratorError, RuleEvaluationError, ValidationError
from orchestrator.rules.actions import normalize_action
from orchestrator.rules.conditions import parse_condition, evaluate

logger = logging.getLogger('rules.engine')


@dataclass
class Event:
    event_type: str
    lead_id: Optional[str] = None
    task_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        event_type = (data or {}).get('event_type')
        if not event_type or not isinstance(event_type, str):
            raise ValidationError("Event requires an 'event_type' string")
        payload = data.get('payload') or {}
        if not isinstance(payload, dict):
            raise ValidationError("Event payload must be an object")
        return cls(
            event_type=event_type,
            lead_id=data.get('lead_id'),
            task_id=data.get('task_id'),
            payload=payload,
        )


@dataclass
class RuleFiring:
    rule_id: str
    rule_name: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'rule_name': self.rule_name,
            'results': self.results,
            'error': self.error,
        }


class RuleEngine:

    def __init__(self, store, scheduler, notifier=None):
        self.store = store
        self.scheduler = scheduler
        self.notifier = notifier

    def handle_event(self, event) -> List[RuleFiring]:
        """Run one engine pass for `event`; returns one RuleFiring per matching rule."""
        if isinstance(event, dict):
            event = Event.from_dict(event)

        task = self.store.get_task(event.task_id) if event.task_id else None
        lead_id = event.lead_id or (task.target_entity if task is not None else None)
        lead = self.store.get_lead(lead_id) if lead_id else None

        context = {
            'payload': dict(event.payload),
            'task': task.to_dict() if task is not None else {},
            'lead': lead.to_dict() if lead is not None else {},
        }

        rules = [r for r in self.store.list_rules(active_only=True)
                 if r.trigger in (event.event_type, '*')]
        log_extra = {'event_type': event.event_type, 'lead_id': lead_id}
        logger.debug("Event %s: %d candidate rules", event.event_type, len(rules), extra=log_extra)

        firings = []
        for rule in rules:
            try:
                if not self._matches(rule, context):
                    continue
                actions = [normalize_action(a) for a in (rule.actions or [])]
            except RuleEvaluationError as e:
                logger.warning("Skipping rule %s '%s' for %s: %s", rule.id, rule.name,
                               event.event_type, e, extra={'rule_id': rule.id})
                continue

            firing = RuleFiring(rule_id=rule.id, rule_name=rule.name)
            logger.info("Rule '%s' fired on %s", rule.name, event.event_type,
                        extra={'rule_id': rule.id, **log_extra})
            for action in actions:
                try:
                    firing.results.append(self._execute(action, rule, event, lead, task))
                except OrchestratorError as e:
                    firing.error = f"{action['type']}: {e}"
                    logger.error("Rule '%s' action %s failed: %s", rule.name, action['type'], e,
                                 extra={'rule_id': rule.id})
                    break
            firings.append(firing)
        return firings

    def _matches(self, rule, context) -> bool:
        for text in rule.conditions or []:
            if not evaluate(parse_condition(text), context):
                return False
        return True

    # ── Actions ──────────────────────────────────────────────────────────────

    def _execute(self, action, rule, event, lead, task) -> Dict[str, Any]:
        kind = action['type']
        if kind == 'create_task':
            return self._create_task(action, rule, event, lead)
        if kind == 'set_priority':
            return self._overwrite('priority', action['priority'], event, lead, task)
        if kind == 'reassign':
            worker = action.get('worker') or rule.assigned_worker
            if not worker:
                raise RuleEvaluationError("reassign: no worker given and rule has no assigned_worker")
            return self._overwrite('assigned_worker', worker, event, lead, task)
        return self._notify(action, rule, event, lead, task)

    def _create_task(self, action, rule, event, lead) -> Dict[str, Any]:
        now = self.scheduler.clock()
        task_type = action['task_type']
        metadata = dict(action.get('metadata') or {})
        if lead is not None:
            metadata.setdefault('client_name', lead.name)
        metadata.setdefault('rule_id', rule.id)
        metadata.setdefault('event_type', event.event_type)

        created = self.scheduler.schedule({
            'name': action.get('name') or rule.name,
            'description': action.get('description')
                or f"Created by rule '{rule.name}' on {event.event_type}",
            'type': task_type,
            'priority': action['priority'],
            'assigned_worker': action.get('assigned_worker') or rule.assigned_worker,
            'target_entity': lead.id if lead is not None else None,
            'scheduled_at': now + timedelta(minutes=action['delay_minutes']),
            'estimated_duration': action.get('estimated_duration', 15),
            'max_retries': action.get('max_retries', 3),
            'workflow_id': action.get('workflow_id'),
            'metadata': metadata,
        })
        return {'action': 'create_task', 'task_id': created.id, 'status': created.status}

    def _overwrite(self, field_name, value, event, lead, task) -> Dict[str, Any]:
        if task is not None:
            def apply(row):
                setattr(row, field_name, value)
            self.store.update_task(task.id, apply, action=f'{field_name}_changed')
            return {'action': field_name, 'task_id': task.id, 'value': value}
        if lead is not None:
            self.store.update_lead(lead.id, {field_name: value}, action=f'{field_name}_changed')
            return {'action': field_name, 'lead_id': lead.id, 'value': value}
        raise RuleEvaluationError(f"{field_name}: event {event.event_type} has no lead or task")

    def _notify(self, action, rule, event, lead, task) -> Dict[str, Any]:
        message = action.get('message') or f"Rule '{rule.name}' fired on {event.event_type}"
        sent = False
        if self.notifier is not None:
            try:
                sent = bool(self.notifier.notify_rule_action(rule, message, lead=lead, task=task))
            except Exception:
                logger.error("notify action of rule '%s' failed", rule.name, exc_info=True)
        return {'action': 'notify', 'message': message, 'sent': sent}
