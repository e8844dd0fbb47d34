"""Tests for the Automation Rule Engine."""
from datetime import timedelta

import pytest

from orchestrator.errors import NotFoundError, ValidationError
from orchestrator.rules.engine import Event


def _rule(store, **overrides):
    data = {'name': 'rule', 'trigger': 'lead_created', 'conditions': [], 'actions': []}
    data.update(overrides)
    return store.create_rule(data)


class TestEvent:

    def test_from_dict(self):
        event = Event.from_dict({'event_type': 'lead_created', 'lead_id': 'l-1', 'payload': {'a': 1}})
        assert event.event_type == 'lead_created'
        assert event.payload == {'a': 1}

    @pytest.mark.parametrize('data', [{}, {'event_type': ''}, {'event_type': 'x', 'payload': [1]}])
    def test_invalid(self, data):
        with pytest.raises(ValidationError):
            Event.from_dict(data)


class TestHighBudgetRule:

    def test_fires_once_for_high_budget(self, store, rule_engine, make_lead):
        _rule(store, conditions=['budget_max > 5000000'], actions=['create_task'])
        lead = make_lead(budget_max=6000000)

        firings = rule_engine.handle_event(Event('lead_created', lead_id=lead.id))

        assert len(firings) == 1
        tasks = store.list_tasks()
        assert len(tasks) == 1
        assert tasks[0].target_entity == lead.id
        assert tasks[0].type == 'lead_followup'
        assert tasks[0].status == 'pending'

    def test_silent_for_low_budget(self, store, rule_engine, make_lead):
        _rule(store, conditions=['budget_max > 5000000'], actions=['create_task'])
        lead = make_lead(budget_max=1000000)
        assert rule_engine.handle_event(Event('lead_created', lead_id=lead.id)) == []
        assert store.list_tasks() == []


class TestMatching:

    def test_trigger_and_activity(self, store, rule_engine, make_lead):
        _rule(store, name='other trigger', trigger='lead_updated', actions=['notify'])
        _rule(store, name='inactive', is_active=False, actions=['notify'])
        _rule(store, name='wildcard', trigger='*', actions=['notify'])
        lead = make_lead()
        firings = rule_engine.handle_event({'event_type': 'lead_created', 'lead_id': lead.id})
        assert [f.rule_name for f in firings] == ['wildcard']

    def test_multiple_rules_fire(self, store, rule_engine, make_lead):
        _rule(store, name='a', actions=['notify'])
        _rule(store, name='b', actions=['notify'])
        lead = make_lead()
        assert len(rule_engine.handle_event(Event('lead_created', lead_id=lead.id))) == 2

    def test_conditions_see_snapshot_before_actions(self, store, rule_engine, make_lead):
        _rule(store, name='first', actions=['set_priority:high'])
        _rule(store, name='second', conditions=['lead.priority = high'], actions=['notify'])
        lead = make_lead()
        firings = rule_engine.handle_event(Event('lead_created', lead_id=lead.id))
        assert [f.rule_name for f in firings] == ['first']
        assert store.get_lead(lead.id).priority == 'high'

    def test_malformed_rule_skipped(self, store, rule_engine, make_lead):
        _rule(store, name='broken', conditions=['budget'], actions=['notify'])
        _rule(store, name='bad action', actions=['teleport'])
        _rule(store, name='fine', actions=['notify'])
        lead = make_lead()
        firings = rule_engine.handle_event(Event('lead_created', lead_id=lead.id))
        assert [f.rule_name for f in firings] == ['fine']

    def test_unknown_lead(self, rule_engine):
        with pytest.raises(NotFoundError):
            rule_engine.handle_event(Event('lead_created', lead_id='ghost'))

    def test_task_event_resolves_lead(self, store, rule_engine, make_lead, make_task):
        _rule(store, trigger='task_failed', conditions=['lead.source = whatsapp'], actions=['notify'])
        lead = make_lead(source='whatsapp')
        task = make_task(target_entity=lead.id)
        assert len(rule_engine.handle_event(Event('task_failed', task_id=task.id))) == 1


class TestActions:

    def test_create_task_delay_and_defaults(self, store, rule_engine, make_lead, clock):
        _rule(store, name='WhatsApp welcome', assigned_worker='Layla (Follow-up Specialist)', actions=[
            {'type': 'create_task', 'task_type': 'whatsapp_sequence', 'delay_minutes': 120,
             'metadata': {'total_steps': 3}},
        ])
        lead = make_lead(name='Ahmed Al-Rashid')
        rule_engine.handle_event(Event('lead_created', lead_id=lead.id))

        task = store.list_tasks()[0]
        assert task.name == 'WhatsApp welcome'
        assert task.status == 'scheduled'
        assert task.scheduled_at == clock.now + timedelta(minutes=120)
        assert task.assigned_worker == 'Layla (Follow-up Specialist)'
        assert task.payload['client_name'] == 'Ahmed Al-Rashid'
        assert task.max_retries == 3

    def test_create_task_never_dedups(self, store, rule_engine, make_lead):
        _rule(store, actions=['create_task'])
        lead = make_lead()
        rule_engine.handle_event(Event('lead_created', lead_id=lead.id))
        rule_engine.handle_event(Event('lead_created', lead_id=lead.id))
        assert len(store.list_tasks()) == 2

    def test_set_priority_prefers_task(self, store, rule_engine, make_lead, make_task):
        _rule(store, trigger='task_failed', actions=['set_priority:critical'])
        lead = make_lead()
        task = make_task(target_entity=lead.id)
        rule_engine.handle_event(Event('task_failed', task_id=task.id))
        assert store.get_task(task.id).priority == 'critical'
        assert store.get_lead(lead.id).priority == 'medium'

    def test_reassign_defaults_to_rule_worker(self, store, rule_engine, make_lead):
        _rule(store, assigned_worker='Omar (Lead Qualification)', actions=['reassign'])
        lead = make_lead()
        rule_engine.handle_event(Event('lead_created', lead_id=lead.id))
        assert store.get_lead(lead.id).assigned_worker == 'Omar (Lead Qualification)'

    def test_notify_failure_does_not_stop_actions(self, store, rule_engine, make_lead, notifier):
        notifier.notify_rule_action.side_effect = RuntimeError("slack down")
        _rule(store, actions=['notify:hello', 'set_priority:high'])
        lead = make_lead()
        firing = rule_engine.handle_event(Event('lead_created', lead_id=lead.id))[0]
        assert firing.results[0] == {'action': 'notify', 'message': 'hello', 'sent': False}
        assert store.get_lead(lead.id).priority == 'high'

    def test_action_error_recorded_on_firing(self, store, rule_engine):
        _rule(store, trigger='ping', actions=['set_priority:high'])
        firing = rule_engine.handle_event(Event('ping'))[0]
        assert firing.error.startswith('set_priority')
