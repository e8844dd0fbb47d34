"""
Notifications — Slack webhook posts for rule `notify` actions and task alerts.

Notification failure never blocks a transition or a rule pass.
"""
import logging
import requests

from orchestrator import config
from orchestrator.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.notifications')


def _post(blocks, text):
    if not config.SLACK_WEBHOOK_URL:
        logger.debug("SLACK_WEBHOOK_URL not set — skipping notification: %s", text)
        return False
    try:
        breaker = get_breaker('slack')
        resp = breaker.call(
            requests.post, config.SLACK_WEBHOOK_URL,
            json={'text': text, 'blocks': blocks}, timeout=10,
        )
        resp.raise_for_status()
        return True
    except Exception:
        logger.error("Failed to send Slack notification: %s", text, exc_info=True)
        return False


def notify_rule_action(rule, message, lead=None, task=None):
    """Post the message of a rule's notify action."""
    fields = [{"type": "mrkdwn", "text": f"*Rule:* {rule.name}"}]
    if lead is not None:
        fields.append({"type": "mrkdwn", "text": f"*Lead:* {lead.name or lead.id}"})
        fields.append({"type": "mrkdwn", "text": f"*Status:* {lead.status}"})
    if task is not None:
        fields.append({"type": "mrkdwn", "text": f"*Task:* {task.name}"})
    if rule.assigned_worker:
        fields.append({"type": "mrkdwn", "text": f"*Worker:* {rule.assigned_worker}"})

    blocks = [
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
        {"type": "section", "fields": fields},
    ]
    return _post(blocks, message)


def notify_task_overdue(task, elapsed_minutes):
    text = (f"Task '{task.name}' is overdue: running {elapsed_minutes:.0f} min "
            f"(estimated {task.estimated_duration} min)")
    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "Task overdue"}},
        {"type": "section", "fields": [
            {"type": "mrkdwn", "text": f"*Task:* {task.name}"},
            {"type": "mrkdwn", "text": f"*Worker:* {task.assigned_worker or 'unassigned'}"},
            {"type": "mrkdwn", "text": f"*Running:* {elapsed_minutes:.0f} min"},
            {"type": "mrkdwn", "text": f"*Estimated:* {task.estimated_duration} min"},
        ]},
    ]
    return _post(blocks, text)


def notify_task_exhausted(task):
    text = f"Task '{task.name}' FAILED after {task.retry_count}/{task.max_retries} attempts"
    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": "Task failed — retries exhausted"}},
        {"type": "section", "fields": [
            {"type": "mrkdwn", "text": f"*Task:* {task.name}"},
            {"type": "mrkdwn", "text": f"*Type:* {task.type}"},
            {"type": "mrkdwn", "text": f"*Worker:* {task.assigned_worker or 'unassigned'}"},
            {"type": "mrkdwn", "text": f"*Attempts:* {task.retry_count}/{task.max_retries}"},
        ]},
    ]
    if task.error_message:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Error:* ```{task.error_message[:500]}```"},
        })
    return _post(blocks, text)
