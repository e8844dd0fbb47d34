"""
Fixture data for local development and demos — Dubai sample leads, a few
automated tasks and the two default automation rules.

Loaded explicitly via `flask seed`; existing rows (matched by id) are left
untouched, so running it twice is harmless.
"""
import logging
from datetime import timedelta

from orchestrator.errors import NotFoundError

logger = logging.getLogger('seed')

SEED_LEADS = [
    {'id': 'lead-001', 'name': 'Ahmed Al-Rashid', 'phone': '+971 50 123 4567',
     'email': 'ahmed.rashid@email.com', 'source': 'whatsapp', 'score': 95, 'status': 'qualified',
     'property_interest': '3BR Villa in Arabian Ranches', 'budget_max': 3500000,
     'location': 'Arabian Ranches', 'timeline': 'Next 2 months',
     'assigned_worker': 'Omar (Lead Qualification)'},
    {'id': 'lead-002', 'name': 'Maria Gonzalez', 'phone': '+971 55 987 6543',
     'email': 'maria.gonzalez@email.com', 'source': 'bayut', 'score': 78, 'status': 'interested',
     'property_interest': '2BR Apartment in Marina', 'budget_max': 1800000,
     'location': 'Dubai Marina', 'timeline': 'Next 6 months',
     'assigned_worker': 'Layla (Follow-up Specialist)'},
    {'id': 'lead-003', 'name': 'Fatima Al-Zahra', 'phone': '+971 52 234 5678',
     'email': 'fatima.zahra@email.com', 'source': 'property_finder', 'score': 89,
     'status': 'viewing_scheduled', 'property_interest': '4BR Penthouse in JBR',
     'budget_max': 8500000, 'priority': 'high', 'location': 'Jumeirah Beach Residence',
     'timeline': 'Next month', 'assigned_worker': 'Ahmed (Appointment Agent)'},
    {'id': 'lead-004', 'name': 'John Smith', 'phone': '+971 56 345 6789',
     'email': 'john.smith@email.com', 'source': 'website', 'score': 92, 'status': 'negotiating',
     'property_interest': '3BR Apartment in Downtown', 'budget_max': 4200000,
     'location': 'Downtown Dubai', 'timeline': 'Immediate',
     'assigned_worker': 'Alex (Pipeline Coordinator)'},
    {'id': 'lead-005', 'name': 'Omar Hassan', 'phone': '+971 58 111 2233',
     'email': 'omar.hassan@email.com', 'source': 'referral', 'score': 81, 'status': 'contacted',
     'property_interest': '5BR Villa in Emirates Hills', 'budget_max': 15000000,
     'priority': 'high', 'location': 'Emirates Hills', 'timeline': '3 months',
     'assigned_worker': 'Sarah (Manager Agent)'},
    {'id': 'lead-006', 'name': 'Lina Chen', 'phone': '+971 54 222 3344',
     'email': 'lina.chen@email.com', 'source': 'website', 'score': 74, 'status': 'new',
     'property_interest': 'Studio in Business Bay', 'budget_max': 800000,
     'location': 'Business Bay', 'timeline': '6 months',
     'assigned_worker': 'Omar (Lead Qualification)'},
    {'id': 'lead-007', 'name': 'Yousef Al-Mansoori', 'phone': '+971 50 555 6667',
     'email': 'yousef.mansoori@email.com', 'source': 'bayut', 'score': 88, 'status': 'closed_won',
     'property_interest': '2BR Townhouse in Dubai Hills', 'budget_max': 2200000,
     'location': 'Dubai Hills', 'timeline': 'Immediate',
     'assigned_worker': 'Alex (Pipeline Coordinator)'},
    {'id': 'lead-008', 'name': 'Priya Singh', 'phone': '+971 55 333 4445',
     'email': 'priya.singh@email.com', 'source': 'property_finder', 'score': 70,
     'status': 'closed_lost', 'property_interest': '1BR Apartment in JLT', 'budget_max': 950000,
     'location': 'Jumeirah Lake Towers', 'timeline': 'Next year',
     'assigned_worker': 'Sarah (Manager Agent)'},
]

# (task, minutes from now until scheduled_at)
SEED_TASKS = [
    ({'id': 'task-001', 'name': 'WhatsApp Follow-up Sequence',
      'description': 'Send 3-day follow-up sequence to qualified lead Ahmed Al-Rashid',
      'type': 'whatsapp_sequence', 'priority': 'high',
      'assigned_worker': 'Layla (Follow-up Specialist)', 'target_entity': 'lead-001',
      'estimated_duration': 15, 'max_retries': 3, 'workflow_id': 'whatsapp-followup-sequence',
      'metadata': {'clientName': 'Ahmed Al-Rashid', 'propertyId': 'prop-456',
                   'sequenceStep': 2, 'totalSteps': 3}}, 0),
    ({'id': 'task-002', 'name': 'Viewing Confirmation Pack',
      'description': 'Generate viewing pack for the JBR penthouse',
      'type': 'document_generation', 'priority': 'medium',
      'assigned_worker': 'Ahmed (Appointment Agent)', 'target_entity': 'lead-003',
      'estimated_duration': 10, 'max_retries': 2,
      'metadata': {'document_kind': 'viewing_pack', 'property_id': 'prop-789'}}, 30),
    ({'id': 'task-003', 'name': 'RERA Compliance Check',
      'description': 'Verify listing permits before the Downtown offer',
      'type': 'compliance_check', 'priority': 'critical',
      'assigned_worker': 'Alex (Pipeline Coordinator)', 'target_entity': 'lead-004',
      'estimated_duration': 20, 'max_retries': 3,
      'metadata': {'property_id': 'prop-321'}}, 0),
    ({'id': 'task-004', 'name': 'Monthly Marina Market Report',
      'description': 'Price trends for Dubai Marina apartments',
      'type': 'market_report', 'priority': 'low',
      'assigned_worker': 'Maya (Campaign Coordinator)',
      'estimated_duration': 45, 'max_retries': 1,
      'metadata': {'area': 'Dubai Marina', 'period': 'monthly'}}, 24 * 60),
]

SEED_RULES = [
    {'id': 'rule-high-budget', 'name': 'High Budget Lead Alert', 'trigger': 'lead_created',
     'conditions': ['budget > 5000000'],
     'actions': ['notify:High budget lead (over AED 5M) needs a manager', 'set_priority:high'],
     'assigned_worker': 'Sarah (Manager Agent)'},
    {'id': 'rule-whatsapp-welcome', 'name': 'Auto-Response for New WhatsApp Leads',
     'trigger': 'lead_created',
     'conditions': ['source = whatsapp', 'first_contact = true'],
     'actions': [
         'notify:Welcome message sent to new WhatsApp lead',
         {'type': 'create_task', 'task_type': 'whatsapp_sequence', 'delay_minutes': 120,
          'name': 'WhatsApp follow-up', 'metadata': {'total_steps': 3}},
     ],
     'assigned_worker': 'Layla (Follow-up Specialist)'},
]


def _exists(getter, entity_id):
    try:
        getter(entity_id)
        return True
    except NotFoundError:
        return False


def load_seed_data(store, scheduler):
    """Insert the fixtures that are not there yet. Returns counts of rows added."""
    counts = {'leads': 0, 'tasks': 0, 'rules': 0, 'stages': store.seed_stage_config()}

    for lead in SEED_LEADS:
        if not _exists(store.get_lead, lead['id']):
            store.create_lead(dict(lead))
            counts['leads'] += 1

    now = scheduler.clock()
    for task, offset_minutes in SEED_TASKS:
        if not _exists(store.get_task, task['id']):
            scheduler.schedule(dict(task, scheduled_at=now + timedelta(minutes=offset_minutes)))
            counts['tasks'] += 1

    for rule in SEED_RULES:
        if not _exists(store.get_rule, rule['id']):
            store.create_rule(dict(rule))
            counts['rules'] += 1

    logger.info("Seed data loaded: %s", counts)
    return counts
