"""
Query/Filter Service — read views over Leads and Tasks.

Filters are plain dataclasses; an empty field means "don't filter on it".
Sorting is stable with ties broken by id ascending, whatever the direction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from orchestrator.clock import parse_timestamp
from orchestrator.config import LEAD_PIPELINE, PRIORITIES, TASK_STATUSES
from orchestrator.errors import ValidationError

logger = logging.getLogger('services.query')

LEAD_SORT_KEYS = ('score', 'date', 'status')
# Tasks carry no score
TASK_SORT_KEYS = ('date', 'status', 'priority')
SORT_KEYS = ('score', 'date', 'status', 'priority')
SORT_DIRECTIONS = ('asc', 'desc')

_LEAD_SEARCH_FIELDS = ('name', 'phone', 'location', 'property_interest')
_TASK_SEARCH_FIELDS = ('name', 'description', 'assigned_worker')


@dataclass
class LeadFilter:
    status: Optional[str] = None
    search_term: Optional[str] = None


@dataclass
class TaskFilter:
    status: List[str] = field(default_factory=list)
    type: List[str] = field(default_factory=list)
    priority: List[str] = field(default_factory=list)
    agent: Optional[str] = None
    search_term: Optional[str] = None
    # (start, end) on scheduled_at, both inclusive; either end may be None
    date_range: Optional[Tuple[Optional[datetime], Optional[datetime]]] = None


def _matches_search(item, fields: Sequence[str], term: str) -> bool:
    needle = term.lower()
    return any(needle in str(getattr(item, f, '') or '').lower() for f in fields)


def filter_leads(leads, lead_filter: Optional[LeadFilter] = None) -> list:
    lead_filter = lead_filter or LeadFilter()
    result = []
    for lead in leads:
        if lead_filter.status and lead.status != lead_filter.status:
            continue
        if lead_filter.search_term and not _matches_search(lead, _LEAD_SEARCH_FIELDS, lead_filter.search_term):
            continue
        result.append(lead)
    return result


def filter_tasks(tasks, task_filter: Optional[TaskFilter] = None) -> list:
    f = task_filter or TaskFilter()
    start, end = f.date_range if f.date_range else (None, None)
    agent = f.agent.lower() if f.agent else None

    result = []
    for task in tasks:
        if f.status and task.status not in f.status:
            continue
        if f.type and task.type not in f.type:
            continue
        if f.priority and task.priority not in f.priority:
            continue
        if agent and (task.assigned_worker or '').lower() != agent:
            continue
        if f.search_term and not _matches_search(task, _TASK_SEARCH_FIELDS, f.search_term):
            continue
        if start is not None or end is not None:
            when = task.scheduled_at
            if when is None:
                continue
            if start is not None and when < start:
                continue
            if end is not None and when > end:
                continue
        result.append(task)
    return result


def _status_rank(status):
    if status in LEAD_PIPELINE:
        return LEAD_PIPELINE.index(status)
    if status in TASK_STATUSES:
        return TASK_STATUSES.index(status)
    return len(LEAD_PIPELINE)


def _sort_value(item, key):
    if key == 'score':
        return getattr(item, 'score', None) or 0
    if key == 'date':
        return item.updated_at or datetime.min
    if key == 'status':
        return _status_rank(item.status)
    return PRIORITIES.index(item.priority) if item.priority in PRIORITIES else -1


def sort_items(items, key: str, direction: str = 'asc', allowed: Sequence[str] = SORT_KEYS) -> list:
    """
    Stable sort on score | date (updated_at) | status | priority.

    Items are first ordered by id so equal keys come out id-ascending in
    both directions (Python's sort stays stable with reverse=True).
    """
    if key not in allowed:
        raise ValidationError(f"Unknown sort key '{key}' (expected one of {', '.join(allowed)})")
    if direction not in SORT_DIRECTIONS:
        raise ValidationError(f"Sort direction must be 'asc' or 'desc', got '{direction}'")
    by_id = sorted(items, key=lambda item: item.id)
    return sorted(by_id, key=lambda item: _sort_value(item, key), reverse=(direction == 'desc'))


# ── Query API ────────────────────────────────────────────────────────────────

def list_leads(store, lead_filter: Optional[LeadFilter] = None,
               sort: Optional[Tuple[str, str]] = None) -> list:
    leads = filter_leads(store.list_leads(), lead_filter)
    if sort:
        leads = sort_items(leads, sort[0], sort[1], allowed=LEAD_SORT_KEYS)
    return leads


def list_tasks(store, task_filter: Optional[TaskFilter] = None,
               sort: Optional[Tuple[str, str]] = None) -> list:
    tasks = filter_tasks(store.list_tasks(), task_filter)
    if sort:
        tasks = sort_items(tasks, sort[0], sort[1], allowed=TASK_SORT_KEYS)
    return tasks


def get_stage_snapshot(pipeline) -> list:
    return pipeline.get_stage_snapshot()


# ── Request-arg parsing (used by the API blueprint) ─────────────────────────

def _split(args, name) -> List[str]:
    values = []
    for raw in args.getlist(name):
        values.extend(v.strip() for v in raw.split(',') if v.strip())
    return values


def lead_filter_from_args(args) -> LeadFilter:
    return LeadFilter(status=args.get('status') or None, search_term=args.get('q') or None)


def task_filter_from_args(args) -> TaskFilter:
    try:
        start = parse_timestamp(args.get('from'))
        end = parse_timestamp(args.get('to'))
    except ValueError as e:
        raise ValidationError(f"Bad date range: {e}") from e
    return TaskFilter(
        status=_split(args, 'status'),
        type=_split(args, 'type'),
        priority=_split(args, 'priority'),
        agent=args.get('agent') or None,
        search_term=args.get('q') or None,
        date_range=(start, end) if (start or end) else None,
    )


def sort_from_args(args) -> Optional[Tuple[str, str]]:
    key = args.get('sort')
    if not key:
        return None
    return key, args.get('direction', 'asc')
