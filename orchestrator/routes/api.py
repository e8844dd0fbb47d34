"""
API routes — leads, tasks, rules, events and read views.

Domain errors propagate to the app-level OrchestratorError handler, which
maps them onto 400 / 404 / 409.
"""
import logging
from flask import Blueprint, current_app, jsonify, request

from orchestrator.errors import ValidationError
from orchestrator.services.query import (
    lead_filter_from_args, task_filter_from_args, sort_from_args,
)

logger = logging.getLogger('routes.api')

bp = Blueprint('api', __name__, url_prefix='/api')

TASK_ACTIONS = ('activate', 'start', 'pause', 'resume', 'retry')


def _engine():
    return current_app.extensions['orchestrator']


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(data, name):
    """Opt-in switches accept only a JSON boolean."""
    value = data.get(name, False)
    if not isinstance(value, bool):
        raise ValidationError(f"'{name}' must be true or false, got {value!r}")
    return value


# ── Events ───────────────────────────────────────────────────────────────────

@bp.route('/events', methods=['POST'])
def submit_event():
    """Feed an external event to the rule engine."""
    fired = _engine().submit_event(_json_body())
    return jsonify({'fired': fired}), 202


# ── Leads ────────────────────────────────────────────────────────────────────

@bp.route('/leads', methods=['POST'])
def create_lead():
    lead, fired = _engine().create_lead(_json_body())
    return jsonify({'lead': lead.to_dict(), 'fired': fired}), 201


@bp.route('/leads')
def list_leads():
    """Filter: ?status=&q=  Sort: ?sort=score|date|status&direction=asc|desc"""
    leads = _engine().list_leads(lead_filter_from_args(request.args), sort_from_args(request.args))
    return jsonify([lead.to_dict() for lead in leads])


@bp.route('/leads/<lead_id>')
def get_lead(lead_id):
    return jsonify(_engine().store.get_lead(lead_id).to_dict())


@bp.route('/leads/<lead_id>', methods=['PATCH'])
def update_lead(lead_id):
    lead, fired = _engine().update_lead(lead_id, _json_body())
    return jsonify({'lead': lead.to_dict(), 'fired': fired})


@bp.route('/leads/<lead_id>/transition', methods=['POST'])
def transition_lead(lead_id):
    data = _json_body()
    if not data.get('status'):
        raise ValidationError("Transition requires 'status'")
    lead, fired = _engine().transition_lead(lead_id, data['status'],
                                            correction=_flag(data, 'correction'))
    return jsonify({'lead': lead.to_dict(), 'fired': fired})


# ── Tasks ────────────────────────────────────────────────────────────────────

@bp.route('/tasks', methods=['POST'])
def create_task():
    task = _engine().create_task(_json_body())
    return jsonify(task.to_dict()), 201


@bp.route('/tasks')
def list_tasks():
    """Filter: ?status=a,b&type=&priority=&agent=&q=&from=&to=  Sort: ?sort=&direction="""
    tasks = _engine().list_tasks(task_filter_from_args(request.args), sort_from_args(request.args))
    return jsonify([task.to_dict() for task in tasks])


@bp.route('/tasks/<task_id>')
def get_task(task_id):
    return jsonify(_engine().store.get_task(task_id).to_dict())


@bp.route('/tasks/<task_id>/<action>', methods=['POST'])
def task_action(task_id, action):
    if action not in TASK_ACTIONS:
        return jsonify({'error': f'Unknown task action: {action}'}), 404

    scheduler = _engine().scheduler
    if action == 'retry':
        data = request.get_json(silent=True) or {}
        task = scheduler.manual_retry(task_id, override=_flag(data, 'override'))
    else:
        task = getattr(scheduler, action)(task_id)
    return jsonify(task.to_dict())


# ── Rules ────────────────────────────────────────────────────────────────────

@bp.route('/rules')
def list_rules():
    active_only = request.args.get('active') in ('1', 'true')
    return jsonify([r.to_dict() for r in _engine().store.list_rules(active_only=active_only)])


@bp.route('/rules', methods=['POST'])
def create_rule():
    rule = _engine().create_rule(_json_body())
    return jsonify(rule.to_dict()), 201


@bp.route('/rules/<rule_id>', methods=['PATCH'])
def update_rule(rule_id):
    rule = _engine().update_rule(rule_id, _json_body())
    return jsonify(rule.to_dict())


# ── Read views ───────────────────────────────────────────────────────────────

@bp.route('/pipeline/snapshot')
def pipeline_snapshot():
    return jsonify([stage.to_dict() for stage in _engine().stage_snapshot()])


@bp.route('/stats')
def get_stats():
    return jsonify(_engine().stats())


@bp.route('/changes')
def recent_changes():
    limit = request.args.get('limit', 50, type=int)
    return jsonify(_engine().recent_changes(max(1, min(limit, 500))))
