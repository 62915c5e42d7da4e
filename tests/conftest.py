import json
import os
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('CONTINUATION_MODE', 'off')
os.environ.setdefault('CLICKUP_API_TOKEN', 'pk_test')
os.environ.setdefault('SHADE_API_KEY', 'shade_test')
os.environ.setdefault('SHADE_DRIVE_ID', '')
os.environ.setdefault('CONTENT_GENERATION_URL', 'https://gen.example.com/functions/v1/generate-social-copy')
for _name in ('CLICKUP_WEBHOOK_SECRET', 'SERVICE_TOKEN'):
    os.environ.pop(_name, None)

from sqlalchemy.orm import sessionmaker  # noqa: E402

from copyflow.config import EngineOptions  # noqa: E402
from copyflow.database import build_engine, init_db  # noqa: E402
from copyflow.integrations.clickup import ClickUpClient  # noqa: E402
from copyflow.integrations.content_generation import ContentGenerationClient  # noqa: E402
from copyflow.integrations.gateway import GatewayClient  # noqa: E402
from copyflow.integrations.shade import TranscriptClient  # noqa: E402
from copyflow.services.pipeline import GenerateCopyPipeline  # noqa: E402
from copyflow.services.run_ledger import RunLedger  # noqa: E402
from copyflow.services.workflow_engine import WorkflowRunner  # noqa: E402

CLICKUP_BASE = 'https://api.clickup.test/api/v2'
SHADE_BASE = 'https://api.shade.test'
GENERATE_URL = 'https://gen.example.com/functions/v1/generate-social-copy'

ASSET_ID = '0f8fad5b-d9cb-469f-a165-70867728950e'
DRIVE_ID = '7c9e6679-7425-40de-944b-e07fc1f90ae7'


async def no_sleep(seconds: float) -> None:
    return None


def make_task(task_id='abc123', checked=True, fields=None, description=None):
    """ClickUp task payload with the fields the pipeline reads and writes."""
    custom_fields = [
        {'id': 'f-gen', 'name': 'Generate Social Copy', 'type': 'checkbox', 'value': 'true' if checked else None},
        {'id': 'f-client', 'name': 'Client ID (Supabase)', 'type': 'short_text', 'value': 'client-42'},
        {'id': 'f-asset', 'name': 'Shade Asset ID', 'type': 'short_text', 'value': ASSET_ID},
        {'id': 'f-copy', 'name': 'Generated Copy', 'type': 'text', 'value': None},
        {'id': 'f-title', 'name': 'YT Title', 'type': 'short_text', 'value': None},
        {'id': 'f-desc', 'name': 'YT Description', 'type': 'text', 'value': None},
        {'id': 'f-transcript', 'name': 'Video Transcription', 'type': 'text', 'value': None},
    ]
    if fields is not None:
        custom_fields = fields
    return {
        'id': task_id,
        'name': f'Episode {task_id}',
        'text_content': description if description is not None else f'Video for {task_id}\nDrive ID: {DRIVE_ID}',
        'custom_fields': custom_fields,
    }


class FakeUpstreams:
    """Routes outbound requests to canned task, transcript and generation responses."""

    def __init__(self):
        self.tasks = {}
        self.task_status = {}
        self.transcript = 'Welcome back to the show.'
        self.transcript_status = 200
        self.generation = {
            'ok': True,
            'id': 'gen1',
            'social_copy': 'Fresh copy for the episode',
            'youtube_titles': json.dumps(['Title A', 'Title B']),
            'youtube_description': 'A description',
        }
        self.generation_status = 200
        self.field_status = {}
        self.field_errors = {}
        self.transcript_error = None
        self.requests = []

    def add_task(self, task):
        self.tasks[task['id']] = task
        return task

    def calls(self, prefix):
        return [r for r in self.requests if str(r.url).startswith(prefix)]

    def field_writes(self):
        return [r for r in self.requests if '/field/' in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        path = request.url.path

        if url.startswith(GENERATE_URL):
            if self.generation_status != 200:
                return httpx.Response(self.generation_status, text='generation exploded')
            return httpx.Response(200, json=self.generation)

        if url.startswith(SHADE_BASE):
            if self.transcript_error:
                raise httpx.ConnectError(self.transcript_error, request=request)
            return httpx.Response(self.transcript_status, text=self.transcript)

        if url.startswith(CLICKUP_BASE):
            parts = path.split('/task/', 1)[1].split('/')
            task_id = parts[0]
            if len(parts) >= 3 and parts[1] == 'field':
                if parts[2] in self.field_errors:
                    raise httpx.ConnectError(self.field_errors[parts[2]], request=request)
                status = self.field_status.get(parts[2], 200)
                return httpx.Response(status, json={} if status == 200 else {'err': 'nope'})
            status = self.task_status.get(task_id, 200 if task_id in self.tasks else 404)
            if status != 200:
                return httpx.Response(status, json={'err': 'Task not found'})
            return httpx.Response(200, json=self.tasks[task_id])

        return httpx.Response(404, json={'err': f'unrouted {url}'})


@pytest.fixture
def engine():
    eng = build_engine('sqlite://')
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ledger(db):
    return RunLedger(db)


@pytest.fixture
def options():
    return EngineOptions(item_delay_seconds=0.0)


@pytest.fixture
def upstreams():
    return FakeUpstreams()


@pytest.fixture
def transport(upstreams):
    return httpx.MockTransport(upstreams.handler)


def build_pipeline(transport, options, api_key='shade_test', default_drive_id=None):
    gateway = GatewayClient(options, transport=transport, sleep=no_sleep)
    return GenerateCopyPipeline(
        clickup=ClickUpClient(gateway, api_token='pk_test', base_url=CLICKUP_BASE),
        transcripts=TranscriptClient(gateway, api_key=api_key, base_url=SHADE_BASE),
        generator=ContentGenerationClient(GENERATE_URL, token='svc', transport=transport),
        default_drive_id=default_drive_id,
    )


@pytest.fixture
def pipeline(transport, options):
    return build_pipeline(transport, options)


@pytest.fixture
def runner(pipeline):
    return WorkflowRunner(pipeline)


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def pipeline_factory(transport, options):
    def factory(**kwargs):
        return build_pipeline(transport, options, **kwargs)

    return factory
