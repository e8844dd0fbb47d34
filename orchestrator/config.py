"""
Centralized configuration — env vars, enums, pipeline stage defaults.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── Database ──────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Workflow executor (n8n webhook) ──────────────────────────────────────────
WORKFLOW_EXECUTOR_URL = os.getenv('WORKFLOW_EXECUTOR_URL')
WORKFLOW_EXECUTOR_TOKEN = os.getenv('WORKFLOW_EXECUTOR_TOKEN')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Scheduler tuning ─────────────────────────────────────────────────────────
RETRY_BASE_SECONDS = int(os.getenv('RETRY_BASE_SECONDS', 60))
RETRY_MAX_SECONDS = int(os.getenv('RETRY_MAX_SECONDS', 3600))
OVERRUN_FACTOR = float(os.getenv('OVERRUN_FACTOR', 1.5))
RECONCILE_INTERVAL = int(os.getenv('RECONCILE_INTERVAL', 30))
RECONCILE_LOCK_TIMEOUT = int(os.getenv('RECONCILE_LOCK_TIMEOUT', 120))

# ── Entity store ─────────────────────────────────────────────────────────────
STORE_MAX_RETRIES = int(os.getenv('STORE_MAX_RETRIES', 3))

# ── Change feed ──────────────────────────────────────────────────────────────
CHANGE_FEED_KEY = 'changes:feed'
CHANGE_FEED_MAX = 500

# ── Lead enums ───────────────────────────────────────────────────────────────
LEAD_SOURCES = [
    'whatsapp',
    'website',
    'bayut',
    'property_finder',
    'referral',
]

# Funnel order; the two closed states share the last rank.
LEAD_PIPELINE = [
    'new',
    'contacted',
    'qualified',
    'interested',
    'viewing_scheduled',
    'negotiating',
    'closed_won',
    'closed_lost',
]

LEAD_TERMINAL_STATUSES = ('closed_won', 'closed_lost')

# ── Task enums ───────────────────────────────────────────────────────────────
TASK_STATUSES = [
    'scheduled',
    'pending',
    'in_progress',
    'completed',
    'failed',
    'paused',
]

PRIORITIES = ['low', 'medium', 'high', 'critical']

TASK_TYPES = [
    'lead_followup',
    'document_generation',
    'compliance_check',
    'social_media',
    'email_campaign',
    'whatsapp_sequence',
    'market_report',
]

# Lead stage implied by a completed task of this type (payload may override).
TASK_COMPLETION_STAGE = {
    'lead_followup': 'contacted',
    'whatsapp_sequence': 'contacted',
}

# ── Pipeline stage defaults — conversion rate, avg days in stage ─────────────
# Reporting jobs overwrite these in the pipeline_stages table.
PIPELINE_STAGE_DEFAULTS = {
    'new':               {'name': 'New Leads',         'conversion_rate': 0.75, 'average_time_in_stage': 2},
    'contacted':         {'name': 'Contacted',         'conversion_rate': 0.60, 'average_time_in_stage': 3},
    'qualified':         {'name': 'Qualified',         'conversion_rate': 0.45, 'average_time_in_stage': 5},
    'interested':        {'name': 'Interested',        'conversion_rate': 0.70, 'average_time_in_stage': 4},
    'viewing_scheduled': {'name': 'Viewing Scheduled', 'conversion_rate': 0.80, 'average_time_in_stage': 2},
    'negotiating':       {'name': 'Negotiating',       'conversion_rate': 0.65, 'average_time_in_stage': 7},
    'closed_won':        {'name': 'Closed Won',        'conversion_rate': 1.0,  'average_time_in_stage': 0},
    'closed_lost':       {'name': 'Closed Lost',       'conversion_rate': 0.0,  'average_time_in_stage': 0},
}

# ── Automation workers ───────────────────────────────────────────────────────
WORKERS = [
    'Sarah (Manager Agent)',
    'Alex (Pipeline Coordinator)',
    'Maya (Campaign Coordinator)',
    'Omar (Lead Qualification)',
    'Layla (Follow-up Specialist)',
    'Ahmed (Appointment Agent)',
]
DEFAULT_WORKER = WORKERS[0]
