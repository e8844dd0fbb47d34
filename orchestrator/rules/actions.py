"""
Rule action normalization.

Actions are stored as either a bare name or an object:

    "create_task"
    "set_priority:high"
    "reassign:Layla (Follow-up Specialist)"
    "notify:High budget lead just arrived"
    {"type": "create_task", "task_type": "whatsapp_sequence", "delay_minutes": 120}

normalize_action() turns each into a dict with a `type` key and validated
parameters, raising RuleEvaluationError for anything malformed.
"""
from typing import Any, Dict

from orchestrator.config import PRIORITIES, TASK_TYPES
from orchestrator.errors import RuleEvaluationError

ACTION_TYPES = ('create_task', 'set_priority', 'reassign', 'notify')

# Key that the "name:argument" shorthand fills in
_SHORTHAND_ARG = {
    'create_task': 'task_type',
    'set_priority': 'priority',
    'reassign': 'worker',
    'notify': 'message',
}


def normalize_action(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, str):
        name, sep, arg = raw.partition(':')
        action = {'type': name.strip()}
        if sep:
            if action['type'] not in _SHORTHAND_ARG:
                raise RuleEvaluationError(f"Unknown action '{raw}'")
            action[_SHORTHAND_ARG[action['type']]] = arg.strip()
    elif isinstance(raw, dict):
        action = dict(raw)
    else:
        raise RuleEvaluationError(f"Action must be a string or object, got {type(raw).__name__}")

    kind = action.get('type')
    if kind not in ACTION_TYPES:
        raise RuleEvaluationError(f"Unknown action type {kind!r}")

    if kind == 'create_task':
        task_type = action.setdefault('task_type', 'lead_followup')
        if task_type not in TASK_TYPES:
            raise RuleEvaluationError(f"create_task: unknown task_type '{task_type}'")
        delay = action.setdefault('delay_minutes', 0)
        if not isinstance(delay, (int, float)) or delay < 0:
            raise RuleEvaluationError(f"create_task: bad delay_minutes {delay!r}")
        priority = action.setdefault('priority', 'medium')
        if priority not in PRIORITIES:
            raise RuleEvaluationError(f"create_task: invalid priority '{priority}'")
    elif kind == 'set_priority':
        if action.get('priority') not in PRIORITIES:
            raise RuleEvaluationError(f"set_priority: invalid priority {action.get('priority')!r}")
    elif kind == 'reassign':
        worker = action.get('worker')
        if worker is not None and not isinstance(worker, str):
            raise RuleEvaluationError("reassign: worker must be a string")
    return action
