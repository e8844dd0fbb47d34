"""Tests for fixture loading."""
from orchestrator.seed import load_seed_data


class TestLoadSeedData:

    def test_loads_everything_once(self, store, scheduler):
        counts = load_seed_data(store, scheduler)
        assert counts == {'leads': 8, 'tasks': 4, 'rules': 2, 'stages': 8}
        assert load_seed_data(store, scheduler) == {'leads': 0, 'tasks': 0, 'rules': 0, 'stages': 0}

    def test_seeded_task_states(self, store, scheduler):
        load_seed_data(store, scheduler)
        assert store.get_task('task-001').status == 'pending'
        assert store.get_task('task-002').status == 'scheduled'
        assert store.get_task('task-001').payload['sequence_step'] == 2
