"""Tests for turning domain events into workflow runs."""

from __future__ import annotations

from backend.app.models.logs import RunLog
from backend.app.models.run import WorkflowRun
from backend.app.workflow.actions import ActionResult
from backend.app.workflow.triggers import dispatch_trigger, start_test_run

BOOKING_CONFIRMATION = {
    "trigger": ("trigger", None, {}),
    "email": ("action", "send_email", {"template_key": "booking_confirmation", "recipient_type": "booking_contact"}),
    "end": ("end", None, {}),
}
BOOKING_CONFIRMATION_EDGES = [("trigger", "email", "default"), ("email", "end", "default")]


def test_event_without_matching_workflow_is_a_no_op(app):
    assert dispatch_trigger("booking_created", {"booking_id": "b-1"}) == []
    assert WorkflowRun.query.count() == 0


def test_only_active_workflows_for_the_event_start_runs(make_workflow, dispatcher):
    sent = []
    dispatcher.register("send_email", lambda invocation: sent.append(invocation.config["template_key"]))
    active, ids = make_workflow(BOOKING_CONFIRMATION, BOOKING_CONFIRMATION_EDGES)
    make_workflow(BOOKING_CONFIRMATION, BOOKING_CONFIRMATION_EDGES, active=False)
    make_workflow(BOOKING_CONFIRMATION, BOOKING_CONFIRMATION_EDGES, event="client_created")

    runs = dispatch_trigger("booking_created", {"booking_id": "b-1", "contact_email": "c@example.com"})

    assert len(runs) == 1
    run = runs[0]
    assert run.workflow_id == active.id
    assert run.trigger_event == "booking_created"
    assert run.trigger_payload == {"booking_id": "b-1", "contact_email": "c@example.com"}
    assert run.status == "success"
    assert run.execution_path == [ids["trigger"], ids["email"], ids["end"]]
    assert sent == ["booking_confirmation"]

    sources = [entry.source for entry in RunLog.query.filter_by(workflow_run_id=run.id).order_by(RunLog.id)]
    assert sources[0] == "trigger"
    assert sources.count("engine") == 3


def test_every_matching_workflow_gets_its_own_run(make_workflow, dispatcher):
    dispatcher.register("send_email", lambda invocation: ActionResult(success=True))
    make_workflow(BOOKING_CONFIRMATION, BOOKING_CONFIRMATION_EDGES)
    make_workflow(BOOKING_CONFIRMATION, BOOKING_CONFIRMATION_EDGES)

    runs = dispatch_trigger("booking_created", {"booking_id": "b-2"})

    assert len(runs) == 2
    assert len({run.workflow_id for run in runs}) == 2
    assert all(run.status == "success" for run in runs)


def test_workflow_without_trigger_node_fails_run(make_workflow):
    make_workflow({"end": ("end", None, {})}, [])

    runs = dispatch_trigger("booking_created", {})

    assert len(runs) == 1
    assert runs[0].status == "failed"
    assert "exactly one trigger node" in runs[0].error_message
    assert runs[0].execution_path == []


def test_test_run_ignores_activation_and_skips_side_effects(make_workflow, dispatcher):
    sent = []
    dispatcher.register("send_email", lambda invocation: sent.append(invocation))
    workflow, ids = make_workflow(
        {
            "trigger": ("trigger", None, {}),
            "wait": ("delay", None, {"delay_value": 2, "delay_unit": "days"}),
            "email": BOOKING_CONFIRMATION["email"],
            "end": ("end", None, {}),
        },
        [("trigger", "wait", "default"), ("wait", "email", "default"), ("email", "end", "default")],
        active=False,
    )

    run = start_test_run(workflow, {"booking_id": "b-3"})

    assert run.is_test is True
    assert run.status == "success"
    assert run.execution_path == [ids["trigger"], ids["wait"], ids["email"], ids["end"]]
    assert sent == []
    assert run.steps == []
