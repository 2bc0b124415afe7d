from __future__ import annotations

import itertools
import pathlib
import sys
from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_dependencies():
    from galleryflow import Config, create_app
    from backend.app.extensions import db

    return Config, create_app, db


ConfigBase, create_app, db = _load_dependencies()


class TestConfig(ConfigBase):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "poolclass": StaticPool,
        "connect_args": {"check_same_thread": False},
    }
    CORS_ALLOWED_ORIGINS = "http://localhost"
    RATELIMIT_ENABLED = False
    ENGINE_SERVICE_KEY = None
    ENABLE_TEST_API = True
    EMAIL_RELAY_URL = "http://mail.test/send"
    ADMIN_EMAIL = "admin@galleryflow.test"
    ACTION_MAX_ATTEMPTS = 1
    ACTION_RETRY_BACKOFF = 0


@pytest.fixture(scope="module")
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def cleanup_tables(request):
    yield

    if "app" not in request.fixturenames:
        return
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


_names = itertools.count(1)


@pytest.fixture()
def make_workflow(app) -> Callable[..., tuple[Any, dict[str, int]]]:
    """Persist a workflow graph.

    ``nodes`` maps a key to ``(node_type, action_type, node_config)``;
    ``edges`` are ``(source_key, target_key, label)`` tuples, optionally with a
    fourth ``sort_order`` element. Returns the workflow and the node ids by key.
    """

    from backend.app.models.workflow import Workflow, WorkflowEdge, WorkflowNode

    def factory(
        nodes: dict[str, tuple[str, str | None, dict[str, Any]]],
        edges: list[tuple],
        *,
        event: str = "booking_created",
        active: bool = True,
        name: str | None = None,
    ) -> tuple[Workflow, dict[str, int]]:
        workflow = Workflow(
            name=name or f"Workflow {next(_names)}",
            trigger_event=event,
            is_active=active,
            conditions={},
        )
        db.session.add(workflow)
        db.session.flush()

        rows: dict[str, WorkflowNode] = {}
        for key, (node_type, action_type, config) in nodes.items():
            row = WorkflowNode(
                workflow_id=workflow.id,
                node_type=node_type,
                action_type=action_type,
                node_config=config,
            )
            db.session.add(row)
            rows[key] = row
        db.session.flush()

        for edge in edges:
            source, target, label = edge[:3]
            sort_order = edge[3] if len(edge) > 3 else 0
            db.session.add(
                WorkflowEdge(
                    workflow_id=workflow.id,
                    source_node_id=rows[source].id,
                    target_node_id=rows[target].id,
                    edge_label=label,
                    sort_order=sort_order,
                )
            )
        db.session.commit()
        return workflow, {key: row.id for key, row in rows.items()}

    return factory


@pytest.fixture()
def dispatcher(app, monkeypatch: pytest.MonkeyPatch):
    """Replace the app's action dispatcher with an empty one for the test."""

    from backend.app.workflow.actions import ActionDispatcher

    replacement = ActionDispatcher(max_attempts=1)
    monkeypatch.setitem(app.extensions, "workflow_actions", replacement)
    return replacement
