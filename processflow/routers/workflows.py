from typing import List

from fastapi import APIRouter

from processflow.deps.errors import translate_errors
from processflow.routers.serializers import path_tree_response
from processflow.schemas.path import PathResponse, PathTreeResponse
from processflow.schemas.workflow import RepairResponse, ViolationsResponse, WorkflowCreate, WorkflowResponse
from processflow.services import consistency_service, path_repository

router = APIRouter(prefix="/workflows", tags=["Workflows"])


@router.post("", response_model=WorkflowResponse)
def create_workflow(payload: WorkflowCreate):
    with translate_errors():
        return path_repository.create_workflow(payload.name)


@router.get("/{workflow_id}/paths", response_model=List[PathTreeResponse])
def list_paths(workflow_id: int):
    with translate_errors():
        nodes = path_repository.list_workflow_paths(workflow_id)
    return [path_tree_response(node) for node in nodes]


@router.post("/{workflow_id}/paths/default", response_model=PathResponse)
def create_default_path(workflow_id: int):
    with translate_errors():
        return path_repository.create_default_path(workflow_id)


@router.post("/{workflow_id}/repair", response_model=RepairResponse)
def repair_workflow(workflow_id: int):
    with translate_errors():
        report = consistency_service.repair_workflow(workflow_id)

    return RepairResponse(
        workflow_id=report.workflow_id,
        checked_path_ids=report.checked_path_ids,
        repaired_path_ids=report.repaired_path_ids,
    )


@router.get("/{workflow_id}/violations", response_model=ViolationsResponse)
def list_violations(workflow_id: int):
    with translate_errors():
        violations = consistency_service.workflow_violations(workflow_id)
    return ViolationsResponse(workflow_id=workflow_id, violations=violations)
