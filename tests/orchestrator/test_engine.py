"""Tests for the Orchestrator facade — event wiring between store, scheduler and rules."""
import pytest

from orchestrator.errors import ValidationError, RuleEvaluationError, InvalidTransition
from orchestrator.seed import SEED_RULES


@pytest.fixture
def seeded_rules(store):
    for rule in SEED_RULES:
        store.create_rule(dict(rule))


class TestLeadEvents:

    def test_whatsapp_lead_gets_follow_up(self, engine, seeded_rules, notifier):
        lead, fired = engine.create_lead({'name': 'Lina Chen', 'source': 'whatsapp', 'budget_max': 900000})
        assert [f['rule_name'] for f in fired] == ['Auto-Response for New WhatsApp Leads']
        tasks = engine.store.list_tasks()
        assert len(tasks) == 1
        assert tasks[0].type == 'whatsapp_sequence'
        assert tasks[0].status == 'scheduled'
        assert tasks[0].target_entity == lead.id
        notifier.notify_rule_action.assert_called_once()

    def test_high_budget_lead_gets_priority(self, engine, seeded_rules):
        lead, fired = engine.create_lead({'name': 'Omar Hassan', 'source': 'referral',
                                          'budget_max': 15000000})
        assert [f['rule_name'] for f in fired] == ['High Budget Lead Alert']
        assert engine.store.get_lead(lead.id).priority == 'high'

    def test_update_cannot_change_status(self, engine, make_lead):
        lead = make_lead()
        with pytest.raises(ValidationError):
            engine.update_lead(lead.id, {'status': 'qualified'})

    def test_transition_fires_status_event(self, engine, store, make_lead):
        store.create_rule({'name': 'won', 'trigger': 'lead_status_changed',
                           'conditions': ['to_status = closed_won'], 'actions': ['notify']})
        lead = make_lead(status='negotiating')
        moved, fired = engine.transition_lead(lead.id, 'closed_won')
        assert moved.status == 'closed_won'
        assert len(fired) == 1

    def test_rejected_transition_fires_nothing(self, engine, store, make_lead):
        store.create_rule({'name': 'any', 'trigger': 'lead_status_changed', 'actions': ['notify']})
        lead = make_lead(status='negotiating')
        with pytest.raises(InvalidTransition):
            engine.transition_lead(lead.id, 'new')


class TestExecutorCallback:

    def test_completed(self, engine, scheduler, make_task, store):
        store.create_rule({'name': 'done', 'trigger': 'task_completed', 'actions': ['notify']})
        task = make_task()
        scheduler.start(task.id)
        done, fired = engine.executor_callback(task.id, 'completed', actual_duration=9)
        assert done.status == 'completed'
        assert done.actual_duration == 9
        assert len(fired) == 1

    def test_failed(self, engine, scheduler, make_task):
        task = make_task()
        scheduler.start(task.id)
        failed, _ = engine.executor_callback(task.id, 'failed', error='template missing')
        assert failed.status == 'failed'
        assert failed.error_message == 'template missing'

    def test_unknown_status(self, engine, make_task):
        with pytest.raises(ValidationError):
            engine.executor_callback(make_task().id, 'exploded')


class TestRulesAndReporting:

    def test_create_rule_checks_syntax(self, engine):
        with pytest.raises(RuleEvaluationError):
            engine.create_rule({'name': 'bad', 'trigger': 'lead_created', 'conditions': ['budget']})
        with pytest.raises(RuleEvaluationError):
            engine.create_rule({'name': 'bad', 'trigger': 'lead_created', 'actions': ['teleport']})

    def test_stats(self, engine, make_lead, make_task, seeded_rules):
        make_lead()
        make_task()
        stats = engine.stats()
        assert stats['total_leads'] == 1
        assert stats['total_tasks'] == 1
        assert stats['active_rules'] == 2

    def test_recent_changes_without_log(self, engine):
        assert engine.recent_changes() == []
