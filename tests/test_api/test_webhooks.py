import json

import pytest
from fastapi.testclient import TestClient

from copyflow.api.dependencies import get_continuation, get_runner
from copyflow.config import Settings, get_settings
from copyflow.core.security import compute_signature
from copyflow.database import get_db
from copyflow.main import app

WEBHOOK = '/webhooks/clickup/generate-copy'


class RecordingContinuation:
    def __init__(self):
        self.requests = []

    def request_drain(self, delay=0.0, reason=''):
        self.requests.append((delay, reason))


@pytest.fixture
def continuation():
    return RecordingContinuation()


@pytest.fixture
def make_client(session_factory, runner, continuation):
    def factory(**settings_overrides):
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
        app.dependency_overrides[get_continuation] = lambda: continuation
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


def test_first_trigger_generates_then_duplicate(client, upstreams, task_factory):
    upstreams.add_task(task_factory('abc123'))

    first = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert first.status_code == 200
    body = first.json()
    assert body['ok'] is True
    assert body['content_id'] == 'gen1'
    assert body['duplicate'] is False
    assert body['social_copy'] == 'Fresh copy for the episode'
    assert body['run_id']

    second = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert second.status_code == 200
    assert second.json() == {'ok': True, 'duplicate': True}
    generation_calls = upstreams.calls('https://gen.example.com')
    assert len(generation_calls) == 1


def test_new_history_item_for_same_task_is_duplicate(client, upstreams, task_factory):
    upstreams.add_task(task_factory('abc123'))

    first = client.post(WEBHOOK, json={'event': 'taskUpdated', 'task_id': 'abc123', 'history_items': [{'id': 'h1'}]})
    second = client.post(WEBHOOK, json={'event': 'taskUpdated', 'task_id': 'abc123', 'history_items': [{'id': 'h2'}]})

    assert first.json()['duplicate'] is False
    assert second.status_code == 200
    assert second.json() == {'ok': True, 'duplicate': True}
    assert len(upstreams.calls('https://gen.example.com')) == 1


def test_task_alias_keys(client, upstreams, task_factory):
    upstreams.add_task(task_factory('nested1'))

    response = client.post(WEBHOOK, json={'task': {'id': 'nested1'}})

    assert response.status_code == 200
    assert response.json()['content_id'] == 'gen1'


def test_missing_task_id_is_skipped(client, upstreams):
    response = client.post(WEBHOOK, json={'event': 'taskUpdated'})

    assert response.status_code == 200
    assert response.json() == {'ok': True, 'skipped': True}
    assert upstreams.requests == []


def test_precondition_not_met_returns_skipped(client, upstreams, task_factory):
    upstreams.add_task(task_factory('abc123', checked=False))

    response = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert response.status_code == 200
    body = response.json()
    assert body['ok'] is True
    assert body['skipped'] is True
    assert 'Generate Social Copy' in body['reason']


def test_failed_run_returns_500_and_can_be_retried(client, upstreams, task_factory):
    upstreams.add_task(task_factory('abc123'))
    upstreams.generation_status = 502

    failed = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert failed.status_code == 500
    assert 'generate-social-copy failed [502]' in failed.json()['error']

    upstreams.generation_status = 200
    retried = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert retried.status_code == 200
    assert retried.json()['run_id'] == failed.json()['run_id']


def test_invalid_json_is_rejected(client):
    response = client.post(WEBHOOK, content=b'{not json', headers={'content-type': 'application/json'})

    assert response.status_code == 400
    assert 'Invalid JSON' in response.json()['error']


def test_other_methods_are_not_allowed(client):
    response = client.get(WEBHOOK)

    assert response.status_code == 405
    assert response.json() == {'error': 'Method not allowed'}


def test_signature_required_when_secret_configured(make_client, upstreams, task_factory):
    client = make_client(CLICKUP_WEBHOOK_SECRET='shh')
    upstreams.add_task(task_factory('abc123'))
    body = json.dumps({'task_id': 'abc123'}).encode()

    missing = client.post(WEBHOOK, content=body)
    wrong = client.post(WEBHOOK, content=body, headers={'x-signature': 'deadbeef'})
    good = client.post(WEBHOOK, content=body, headers={'x-signature': compute_signature(body, 'shh')})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert good.status_code == 200
    assert good.json()['content_id'] == 'gen1'


def test_signature_prefix_and_alternate_header(make_client, upstreams, task_factory):
    client = make_client(CLICKUP_WEBHOOK_SECRET='shh')
    upstreams.add_task(task_factory('abc123'))
    body = json.dumps({'task_id': 'abc123'}).encode()

    response = client.post(
        WEBHOOK,
        content=body,
        headers={'x-clickup-signature': 'sha256=' + compute_signature(body, 'shh')},
    )

    assert response.status_code == 200


def test_queue_mode_enqueues_and_requests_drain(make_client, continuation, upstreams, task_factory):
    client = make_client(WEBHOOK_MODE='queue')
    upstreams.add_task(task_factory('abc123'))

    first = client.post(WEBHOOK, json={'task_id': 'abc123'})
    second = client.post(WEBHOOK, json={'task_id': 'abc123'})

    assert first.status_code == 200
    assert first.json()['queued'] is True
    assert first.json()['task_id'] == 'abc123'
    assert second.json() == {'ok': True, 'already_queued': True, 'task_id': 'abc123'}
    assert len(continuation.requests) == 2
    assert upstreams.requests == []
