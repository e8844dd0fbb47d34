"""
Webhook routes — completion callbacks from the workflow executor.
"""
import logging
from flask import Blueprint, current_app, jsonify, request

from orchestrator.errors import ValidationError

logger = logging.getLogger('routes.webhook')

bp = Blueprint('webhook', __name__)


@bp.route('/webhook/workflow/<task_id>', methods=['POST'])
def workflow_callback(task_id):
    """Body: {"status": "completed"|"failed", "actual_duration"?: minutes, "error"?: str}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Callback body must be a JSON object")

    logger.info("Executor callback for task %s: %s", task_id, data.get('status'),
                extra={'task_id': task_id})
    task, fired = current_app.extensions['orchestrator'].executor_callback(
        task_id,
        data.get('status'),
        actual_duration=data.get('actual_duration'),
        error=data.get('error'),
    )
    return jsonify({'task': task.to_dict(), 'fired': fired})
