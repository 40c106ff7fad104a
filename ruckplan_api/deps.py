from __future__ import annotations

from fastapi import Request

from ruckplan.services.workflow_engine import WorkflowEngine


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine
