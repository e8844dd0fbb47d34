"""
Rule condition parsing and evaluation.

A condition is `field operator literal`, e.g.

    budget_max > 5000000
    source = whatsapp
    first_contact = true
    lead.location contains marina
    task.status != completed

Fields resolve against the event context in order payload → task → lead;
a `payload.` / `task.` / `lead.` prefix pins the source. A field missing from
every source makes the condition false.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict

from orchestrator.errors import RuleEvaluationError

_CONDITION_RE = re.compile(
    r'^\s*(?P<field>[A-Za-z_][\w.]*)\s*'
    r'(?P<op>>=|<=|!=|==|=|>|<|contains\b)\s*'
    r'(?P<literal>.+?)\s*$'
)

SOURCES = ('payload', 'task', 'lead')

FIELD_ALIASES = {
    'budget': 'budget_max',
    'agent': 'assigned_worker',
    'assigned_agent': 'assigned_worker',
}

_MISSING = object()


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    literal: Any
    text: str


def parse_literal(raw: str):
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    lowered = raw.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    if lowered in ('null', 'none'):
        return None
    try:
        return int(raw.replace('_', ''))
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def parse_condition(text: str) -> Condition:
    if not isinstance(text, str):
        raise RuleEvaluationError(f"Condition must be a string, got {type(text).__name__}")
    match = _CONDITION_RE.match(text)
    if not match:
        raise RuleEvaluationError(f"Malformed condition: {text!r}")
    field = match.group('field')
    if '.' in field:
        source, _, key = field.partition('.')
        if source not in SOURCES or not key or '.' in key:
            raise RuleEvaluationError(f"Bad field reference '{field}' in {text!r}")
    op = '=' if match.group('op') == '==' else match.group('op')
    return Condition(field=field, op=op, literal=parse_literal(match.group('literal')), text=text)


def resolve_field(field: str, context: Dict[str, Dict[str, Any]]):
    """Look a field up in the event context; returns _MISSING when absent."""
    if '.' in field:
        source, _, key = field.partition('.')
        scopes = [context.get(source) or {}]
    else:
        key = field
        scopes = [context.get(source) or {} for source in SOURCES]

    for name in (key, FIELD_ALIASES.get(key)):
        if name is None:
            continue
        for scope in scopes:
            if name in scope:
                return scope[name]
    return _MISSING


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce(value, literal):
    """Bring a field value to the literal's type where the intent is obvious."""
    if isinstance(literal, bool) and isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    if _is_number(literal) and isinstance(value, str):
        try:
            return float(value.replace(',', ''))
        except ValueError:
            return value
    return value


def evaluate(condition: Condition, context: Dict[str, Dict[str, Any]]) -> bool:
    value = resolve_field(condition.field, context)
    if value is _MISSING:
        return False

    op, literal = condition.op, condition.literal
    if op == 'contains':
        if value is None:
            return False
        if isinstance(value, (list, tuple, set)):
            return literal in value
        return str(literal).lower() in str(value).lower()

    value = _coerce(value, literal)
    if op == '=':
        if isinstance(value, str) and isinstance(literal, str):
            return value.lower() == literal.lower()
        return value == literal
    if op == '!=':
        if isinstance(value, str) and isinstance(literal, str):
            return value.lower() != literal.lower()
        return value != literal

    # Ordering operators
    if value is None or literal is None:
        return False
    if _is_number(value) and _is_number(literal):
        pass
    elif isinstance(value, str) and isinstance(literal, str):
        pass
    else:
        raise RuleEvaluationError(
            f"Cannot compare {type(value).__name__} with {type(literal).__name__} in {condition.text!r}"
        )
    if op == '>':
        return value > literal
    if op == '>=':
        return value >= literal
    if op == '<':
        return value < literal
    return value <= literal
