"""
Pipeline Stage Manager — the Lead status graph and funnel aggregates.

  NEW → CONTACTED → QUALIFIED → INTERESTED → VIEWING_SCHEDULED → NEGOTIATING
      → CLOSED_WON | CLOSED_LOST

Forward moves may skip stages. Backward moves, moves out of a closed state and
switches between the two closed states need correction=True. A move to the
lead's current status is always rejected.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from orchestrator.config import LEAD_PIPELINE, LEAD_TERMINAL_STATUSES, PIPELINE_STAGE_DEFAULTS
from orchestrator.errors import InvalidTransition, ValidationError

logger = logging.getLogger('pipeline.stages')


def stage_rank(status: str) -> int:
    """Funnel position; both closed states share the last rank."""
    if status in LEAD_TERMINAL_STATUSES:
        return LEAD_PIPELINE.index(LEAD_TERMINAL_STATUSES[0])
    return LEAD_PIPELINE.index(status)


def can_transition(current: str, new: str, correction: bool = False) -> bool:
    if new not in LEAD_PIPELINE or current not in LEAD_PIPELINE:
        return False
    if new == current:
        return False
    if correction:
        return True
    if current in LEAD_TERMINAL_STATUSES:
        return False
    return stage_rank(new) > stage_rank(current)


def next_stages(status: str) -> List[str]:
    """Statuses reachable from `status` without a correction."""
    return [s for s in LEAD_PIPELINE if can_transition(status, s)]


@dataclass
class StageSnapshot:
    id: str
    name: str
    position: int
    lead_count: int
    total_value: int
    conversion_rate: float
    average_time_in_stage: float

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'position': self.position,
            'lead_count': self.lead_count,
            'total_value': self.total_value,
            'conversion_rate': self.conversion_rate,
            'average_time_in_stage': self.average_time_in_stage,
        }


def compute_stage_snapshot(leads: Iterable, stage_config: Optional[Iterable] = None) -> List[StageSnapshot]:
    """
    Group leads by status → per-stage lead_count and total_value.

    conversion_rate / average_time_in_stage come from `stage_config`
    (PipelineStage rows) when given, else from PIPELINE_STAGE_DEFAULTS.
    Every pipeline status appears in the result, in funnel order.
    """
    configured = {}
    for row in stage_config or []:
        configured[row.id] = {
            'name': row.name,
            'conversion_rate': row.conversion_rate,
            'average_time_in_stage': row.average_time_in_stage,
        }

    counts = {status: 0 for status in LEAD_PIPELINE}
    values = {status: 0 for status in LEAD_PIPELINE}
    for lead in leads:
        if lead.status not in counts:
            logger.warning("Lead %s has unknown status '%s' — left out of snapshot", lead.id, lead.status)
            continue
        counts[lead.status] += 1
        values[lead.status] += lead.budget

    snapshot = []
    for position, status in enumerate(LEAD_PIPELINE):
        cfg = configured.get(status) or PIPELINE_STAGE_DEFAULTS.get(status, {})
        snapshot.append(StageSnapshot(
            id=status,
            name=cfg.get('name', status),
            position=position,
            lead_count=counts[status],
            total_value=values[status],
            conversion_rate=cfg.get('conversion_rate', 0.0),
            average_time_in_stage=cfg.get('average_time_in_stage', 0.0),
        ))
    return snapshot


class PipelineStageManager:
    """Validates and applies Lead status changes through the Entity Store."""

    def __init__(self, store):
        self.store = store

    def transition_lead(self, lead_id: str, new_status: str, correction: bool = False):
        if new_status not in LEAD_PIPELINE:
            raise ValidationError(f"Unknown lead status '{new_status}'")

        previous = {}

        def apply(lead):
            if not can_transition(lead.status, new_status, correction):
                raise InvalidTransition('lead', lead.id, lead.status, new_status)
            previous['status'] = lead.status
            lead.status = new_status

        lead = self.store.update_lead(
            lead_id, mutator=apply, action='status_changed',
            data={'correction': correction},
        )
        logger.info("Lead %s: %s → %s%s", lead_id, previous.get('status'), new_status,
                    ' (correction)' if correction else '')
        return lead

    def advance_lead(self, lead_id: str, target_status: str) -> bool:
        """
        Forward-only move used when a task outcome implies a stage.

        Returns False (and logs) instead of raising when the lead is already
        at or past the target.
        """
        try:
            self.transition_lead(lead_id, target_status)
            return True
        except InvalidTransition as e:
            logger.info("Not advancing lead %s: %s", lead_id, e)
            return False

    def get_stage_snapshot(self) -> List[StageSnapshot]:
        return compute_stage_snapshot(self.store.list_leads(), self.store.list_stage_config())
