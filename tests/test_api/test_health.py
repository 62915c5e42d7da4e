from fastapi.testclient import TestClient

from copyflow.main import app


def test_health_reports_database_and_integrations():
    client = TestClient(app)

    response = client.get('/api/v1/health')

    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'healthy'
    assert body['database']['dialect'] == 'sqlite'
    assert body['integrations']['clickup'] is True
    assert body['integrations']['webhook_secret'] is False


def test_root():
    response = TestClient(app).get('/')

    assert response.status_code == 200
    assert 'timestamp' in response.json()
