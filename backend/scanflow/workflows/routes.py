# =============================================================================
# File: scanflow/workflows/routes.py
# Description: Workflow definition and execution routes.
#
# Endpoints:
#   - GET    /workflows                      list workflows
#   - POST   /workflows                      create a workflow
#   - GET    /workflows/<id>                 workflow detail + running executions
#   - DELETE /workflows/<id>                 delete (cancels running executions)
#   - POST   /workflows/<id>/execute         run now; ?async=1 runs in background
#   - GET    /workflows/<id>/executions      executions of one workflow
#   - GET    /workflows/executions/<id>      execution detail
# =============================================================================

from __future__ import annotations

from flask import Blueprint, jsonify, request

from scanflow.errors import NotFoundError
from scanflow.extensions import get_services

workflows_bp = Blueprint("workflows", __name__, url_prefix="/workflows")


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


@workflows_bp.get("")
def list_workflows():
    return jsonify([wf.to_dict() for wf in get_services().workflows.list_workflows()]), 200


@workflows_bp.post("")
def create_workflow():
    body = request.get_json(silent=True) or {}
    wf = get_services().workflows.create_workflow(body)
    return jsonify(wf.to_dict()), 201


@workflows_bp.get("/<workflow_id>")
def get_workflow(workflow_id: str):
    engine = get_services().workflows
    data = engine.get_workflow(workflow_id).to_dict()
    data["runningExecutions"] = engine.running_executions(workflow_id)
    return jsonify(data), 200


@workflows_bp.delete("/<workflow_id>")
def delete_workflow(workflow_id: str):
    if not get_services().workflows.delete_workflow(workflow_id):
        raise NotFoundError(f"Workflow {workflow_id} not found")
    return jsonify(message="deleted", id=workflow_id), 200


@workflows_bp.post("/<workflow_id>/execute")
def execute_workflow(workflow_id: str):
    body = request.get_json(silent=True) or {}
    context = body.get("context") or {}
    engine = get_services().workflows

    if _truthy(request.args.get("async")) or body.get("async") is True:
        engine.execute_async(workflow_id, context)
        return jsonify(message="queued", workflowId=workflow_id), 202

    execution = engine.execute(workflow_id, context)
    return jsonify(execution.to_dict()), 200


@workflows_bp.get("/<workflow_id>/executions")
def list_workflow_executions(workflow_id: str):
    engine = get_services().workflows
    engine.get_workflow(workflow_id)
    return jsonify([e.to_dict() for e in engine.list_executions(workflow_id)]), 200


@workflows_bp.get("/executions/<execution_id>")
def get_execution(execution_id: str):
    execution = get_services().workflows.get_execution(execution_id)
    return jsonify(execution.to_dict()), 200
