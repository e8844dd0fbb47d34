"""Tests for the workflow executor callback."""


def _started_task(scheduler, make_task):
    task = make_task()
    scheduler.start(task.id)
    return task


class TestWorkflowCallback:

    def test_completed(self, client, scheduler, make_task):
        task = _started_task(scheduler, make_task)
        resp = client.post(f'/webhook/workflow/{task.id}',
                           json={'status': 'completed', 'actual_duration': 4})
        assert resp.status_code == 200
        assert resp.get_json()['task']['status'] == 'completed'

    def test_failed_schedules_retry(self, client, scheduler, make_task):
        task = _started_task(scheduler, make_task)
        resp = client.post(f'/webhook/workflow/{task.id}',
                           json={'status': 'failed', 'error': 'template missing'})
        body = resp.get_json()['task']
        assert body['status'] == 'failed'
        assert body['retry_count'] == 1
        assert body['next_retry_at'] is not None

    def test_bad_status_is_400(self, client, scheduler, make_task):
        task = _started_task(scheduler, make_task)
        assert client.post(f'/webhook/workflow/{task.id}', json={'status': 'meh'}).status_code == 400

    def test_unknown_task_is_404(self, client):
        assert client.post('/webhook/workflow/ghost', json={'status': 'completed'}).status_code == 404

    def test_late_callback_is_409(self, client, scheduler, make_task):
        task = _started_task(scheduler, make_task)
        scheduler.pause(task.id)
        assert client.post(f'/webhook/workflow/{task.id}', json={'status': 'completed'}).status_code == 409
