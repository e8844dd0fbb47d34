"""
Entity Store — single owner of Lead, AutomatedTask and AutomationRule rows.

Writes are linearized with optimistic concurrency: every Lead / Task row has
a `version` column (SQLAlchemy version_id_col), so a write based on a stale
read fails with StaleDataError. `_mutate()` retries the whole
read-modify-write up to STORE_MAX_RETRIES times, then raises
ConcurrencyConflict.

Every committed write is published on the ChangeFeed.
"""
import logging
import uuid
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from orchestrator.clock import utcnow
from orchestrator.config import (
    LEAD_SOURCES, LEAD_PIPELINE, PRIORITIES, TASK_STATUSES,
    PIPELINE_STAGE_DEFAULTS, STORE_MAX_RETRIES,
)
from orchestrator.errors import NotFoundError, ConcurrencyConflict, ValidationError
from orchestrator.models import Lead, AutomatedTask, AutomationRule, PipelineStage
from orchestrator.services.change_feed import ChangeFeed, ChangeEvent

logger = logging.getLogger('services.store')

_LEAD_FIELDS = (
    'name', 'phone', 'email', 'source', 'score', 'status', 'priority',
    'budget_min', 'budget_max', 'location', 'property_interest', 'timeline',
    'assigned_worker',
)

_RULE_FIELDS = ('name', 'trigger', 'conditions', 'actions', 'is_active', 'assigned_worker')


def validate_lead(lead):
    """Enforce Lead invariants before any write."""
    if lead.source not in LEAD_SOURCES:
        raise ValidationError(f"Invalid lead source '{lead.source}'")
    if lead.status not in LEAD_PIPELINE:
        raise ValidationError(f"Invalid lead status '{lead.status}'")
    if lead.priority not in PRIORITIES:
        raise ValidationError(f"Invalid lead priority '{lead.priority}'")
    if not isinstance(lead.score, int) or isinstance(lead.score, bool) or not 0 <= lead.score <= 100:
        raise ValidationError(f"Lead score must be an integer in [0, 100], got {lead.score!r}")
    if (lead.budget_min is not None and lead.budget_max is not None
            and lead.budget_min > lead.budget_max):
        raise ValidationError(
            f"budget_min ({lead.budget_min}) exceeds budget_max ({lead.budget_max})"
        )


class EntityStore:
    """CRUD + change feed over the engine's records."""

    def __init__(self, session_factory=None, change_feed: ChangeFeed = None,
                 clock: Callable = None, max_retries: int = STORE_MAX_RETRIES):
        if session_factory is None:
            from orchestrator.database import get_session
            session_factory = get_session
        self._session_factory = session_factory
        self.change_feed = change_feed or ChangeFeed()
        self.clock = clock or utcnow
        self.max_retries = max_retries

    # ── Core write path ──────────────────────────────────────────────────────

    def _insert(self, entity: str, row, action: str = 'created'):
        session = self._session_factory()
        try:
            session.add(row)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(entity, row, action)
        return row

    def _get(self, model, entity: str, entity_id: str):
        session = self._session_factory()
        try:
            row = session.get(model, entity_id)
            if row is None:
                raise NotFoundError(entity, entity_id)
            return row
        finally:
            session.close()

    def _list(self, statement):
        session = self._session_factory()
        try:
            return list(session.scalars(statement).all())
        finally:
            session.close()

    def _mutate(self, model, entity: str, entity_id: str, mutator: Callable,
                action: str, data: Dict = None, validator: Callable = None):
        """
        Read-modify-write one row under optimistic concurrency.

        `mutator(row)` applies changes in place and may raise a domain error
        (rolled back and re-raised). Returning False means "nothing to do":
        the row is returned unchanged and nothing is published.
        """
        for attempt in range(1, self.max_retries + 1):
            session = self._session_factory()
            try:
                row = session.get(model, entity_id)
                if row is None:
                    raise NotFoundError(entity, entity_id)
                if mutator(row) is False:
                    session.expunge(row)
                    return row
                if validator:
                    validator(row)
                if hasattr(row, 'updated_at'):
                    row.updated_at = self.clock()
                session.commit()
                break
            except StaleDataError:
                session.rollback()
                logger.warning("Version conflict on %s %s (attempt %d/%d)",
                               entity, entity_id, attempt, self.max_retries)
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        else:
            raise ConcurrencyConflict(entity, entity_id, self.max_retries)

        self._publish(entity, row, action, data)
        return row

    def _publish(self, entity: str, row, action: str, data: Dict = None):
        self.change_feed.publish(ChangeEvent(
            entity=entity,
            entity_id=row.id,
            action=action,
            at=self.clock(),
            status=getattr(row, 'status', None),
            data=data or {},
        ))

    def publish(self, entity: str, entity_id: str, action: str,
                status: Optional[str] = None, data: Dict = None):
        """Publish a non-mutating event (e.g. an overdue alert)."""
        self.change_feed.publish(ChangeEvent(
            entity=entity, entity_id=entity_id, action=action,
            at=self.clock(), status=status, data=data or {},
        ))

    # ── Leads ────────────────────────────────────────────────────────────────

    def create_lead(self, data: Dict) -> Lead:
        unknown = set(data) - set(_LEAD_FIELDS) - {'id'}
        if unknown:
            raise ValidationError(f"Unknown lead fields: {sorted(unknown)}")
        now = self.clock()
        lead = Lead(
            id=data.get('id') or str(uuid.uuid4()),
            name=data.get('name', ''),
            phone=data.get('phone', ''),
            email=data.get('email', ''),
            source=data.get('source', 'website'),
            score=data.get('score', 0),
            status=data.get('status', 'new'),
            priority=data.get('priority', 'medium'),
            budget_min=data.get('budget_min'),
            budget_max=data.get('budget_max'),
            location=data.get('location', ''),
            property_interest=data.get('property_interest', ''),
            timeline=data.get('timeline', ''),
            assigned_worker=data.get('assigned_worker', ''),
            created_at=now,
            updated_at=now,
        )
        validate_lead(lead)
        logger.info("Creating lead %s (%s, source=%s)", lead.id, lead.name, lead.source)
        return self._insert('lead', lead)

    def get_lead(self, lead_id: str) -> Lead:
        return self._get(Lead, 'lead', lead_id)

    def list_leads(self) -> List[Lead]:
        return self._list(select(Lead).order_by(Lead.id))

    def update_lead(self, lead_id: str, changes: Dict = None, mutator: Callable = None,
                    action: str = 'updated', data: Dict = None) -> Lead:
        """Apply a field dict (or a custom mutator) to a lead."""
        if changes:
            unknown = set(changes) - set(_LEAD_FIELDS)
            if unknown:
                raise ValidationError(f"Unknown lead fields: {sorted(unknown)}")

        def apply(lead):
            if mutator is not None:
                result = mutator(lead)
                if result is False:
                    return False
            for key, value in (changes or {}).items():
                setattr(lead, key, value)

        return self._mutate(Lead, 'lead', lead_id, apply, action, data, validator=validate_lead)

    # ── Tasks ────────────────────────────────────────────────────────────────

    def insert_task(self, task: AutomatedTask) -> AutomatedTask:
        if task.status not in TASK_STATUSES:
            raise ValidationError(f"Invalid task status '{task.status}'")
        if task.target_entity:
            self.get_lead(task.target_entity)
        now = self.clock()
        task.id = task.id or str(uuid.uuid4())
        task.created_at = task.created_at or now
        task.updated_at = now
        return self._insert('task', task, action='scheduled' if task.status == 'scheduled' else 'created')

    def get_task(self, task_id: str) -> AutomatedTask:
        return self._get(AutomatedTask, 'task', task_id)

    def list_tasks(self, statuses: Optional[List[str]] = None) -> List[AutomatedTask]:
        stmt = select(AutomatedTask).order_by(AutomatedTask.id)
        if statuses:
            stmt = stmt.where(AutomatedTask.status.in_(statuses))
        return self._list(stmt)

    def update_task(self, task_id: str, mutator: Callable, action: str = 'updated',
                    data: Dict = None) -> AutomatedTask:
        return self._mutate(AutomatedTask, 'task', task_id, mutator, action, data)

    # ── Rules ────────────────────────────────────────────────────────────────

    def create_rule(self, data: Dict) -> AutomationRule:
        if not data.get('name') or not data.get('trigger'):
            raise ValidationError("Rule requires 'name' and 'trigger'")
        for key in ('conditions', 'actions'):
            if not isinstance(data.get(key, []), list):
                raise ValidationError(f"Rule '{key}' must be a list")
        rule = AutomationRule(
            id=data.get('id') or str(uuid.uuid4()),
            name=data['name'],
            trigger=data['trigger'],
            conditions=list(data.get('conditions', [])),
            actions=list(data.get('actions', [])),
            is_active=bool(data.get('is_active', True)),
            assigned_worker=data.get('assigned_worker', ''),
            created_at=self.clock(),
        )
        return self._insert('rule', rule)

    def get_rule(self, rule_id: str) -> AutomationRule:
        return self._get(AutomationRule, 'rule', rule_id)

    def list_rules(self, active_only: bool = False) -> List[AutomationRule]:
        stmt = select(AutomationRule).order_by(AutomationRule.created_at, AutomationRule.id)
        if active_only:
            stmt = stmt.where(AutomationRule.is_active.is_(True))
        return self._list(stmt)

    def update_rule(self, rule_id: str, changes: Dict) -> AutomationRule:
        unknown = set(changes) - set(_RULE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown rule fields: {sorted(unknown)}")

        def apply(rule):
            for key, value in changes.items():
                setattr(rule, key, value)

        return self._mutate(AutomationRule, 'rule', rule_id, apply, 'updated')

    # ── Pipeline stage configuration ─────────────────────────────────────────

    def list_stage_config(self) -> List[PipelineStage]:
        return self._list(select(PipelineStage).order_by(PipelineStage.position))

    def seed_stage_config(self, defaults: Dict = None) -> int:
        """Insert missing pipeline_stages rows from configuration. Returns rows added."""
        defaults = defaults or PIPELINE_STAGE_DEFAULTS
        session = self._session_factory()
        try:
            added = 0
            for position, status in enumerate(LEAD_PIPELINE):
                if session.get(PipelineStage, status) is not None:
                    continue
                cfg = defaults.get(status, {})
                session.add(PipelineStage(
                    id=status,
                    name=cfg.get('name', status.replace('_', ' ').title()),
                    position=position,
                    conversion_rate=cfg.get('conversion_rate', 0.0),
                    average_time_in_stage=cfg.get('average_time_in_stage', 0.0),
                    updated_at=self.clock(),
                ))
                added += 1
            session.commit()
            return added
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
