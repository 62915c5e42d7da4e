import pytest
from fastapi.testclient import TestClient

from copyflow.api.dependencies import get_continuation, get_engine_options, get_runner
from copyflow.config import EngineOptions, Settings, get_settings
from copyflow.database import get_db
from copyflow.main import app


@pytest.fixture
def make_client(session_factory, runner):
    def factory(batch_size=10, **settings_overrides):
        settings = Settings(**settings_overrides)

        def override_get_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_runner] = lambda: runner
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_continuation] = lambda: None
        app.dependency_overrides[get_engine_options] = lambda: EngineOptions(
            batch_size=batch_size, item_delay_seconds=0
        )
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def test_enqueue_then_drain_in_batches(make_client, upstreams, task_factory):
    client = make_client(batch_size=2)
    for task_id in ('t1', 't2', 't3'):
        upstreams.add_task(task_factory(task_id))

    enqueued = client.post('/queues/generate-copy/enqueue', json={'task_ids': ['t1', 't2', 't3', 't1', ' ']})
    assert enqueued.status_code == 200
    assert enqueued.json() == {'ok': True, 'queued': 3, 'duplicates': 0, 'skipped': 0}

    first = client.post('/queues/generate-copy/drain')
    assert first.json() == {'ok': True, 'processed': 2, 'remaining': 1}

    second = client.post('/queues/generate-copy/drain')
    assert second.json() == {'ok': True, 'processed': 1, 'remaining': 0}

    again = client.post('/queues/generate-copy/enqueue', json={'task_ids': ['t1']})
    assert again.json() == {'ok': True, 'queued': 0, 'duplicates': 1, 'skipped': 0}


def test_runs_are_listed_with_steps(make_client, upstreams, task_factory):
    client = make_client()
    upstreams.add_task(task_factory('t1'))
    client.post('/queues/generate-copy/enqueue', json={'task_ids': ['t1']})
    client.post('/queues/generate-copy/drain')

    runs = client.get('/api/v1/runs/', params={'status': 'success'})
    assert runs.status_code == 200
    listed = runs.json()
    assert len(listed) == 1
    assert listed[0]['idempotency_key'] == 'generate-copy:t1'
    assert listed[0]['attempt'] == 1

    detail = client.get(f"/api/v1/runs/{listed[0]['id']}")
    assert detail.status_code == 200
    steps = detail.json()['steps']
    assert steps[0]['step_name'] == 'fetch_source_record'
    assert steps[-1]['step_name'] == 'finalize'

    assert client.get('/api/v1/runs/not-a-uuid').status_code == 404
    assert client.get('/api/v1/runs/', params={'status': 'bogus'}).status_code == 400


def test_sweep_reports_requeued_count(make_client):
    client = make_client()

    response = client.post('/queues/generate-copy/sweep')

    assert response.json() == {'ok': True, 'requeued': 0}


def test_service_token_guards_queue_endpoints(make_client):
    client = make_client(SERVICE_TOKEN='internal')

    assert client.post('/queues/generate-copy/drain').status_code == 401
    wrong = client.post('/queues/generate-copy/drain', headers={'Authorization': 'Bearer nope'})
    assert wrong.status_code == 401
    assert wrong.json() == {'error': 'Invalid service token'}
    ok = client.post('/queues/generate-copy/drain', headers={'Authorization': 'Bearer internal'})
    assert ok.status_code == 200


def test_enqueue_rejects_empty_list(make_client):
    client = make_client()

    response = client.post('/queues/generate-copy/enqueue', json={'task_ids': []})

    assert response.status_code == 422
