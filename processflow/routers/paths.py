from typing import List, Optional

from fastapi import APIRouter, Query

from processflow.deps.errors import translate_errors
from processflow.routers.serializers import path_tree_response
from processflow.schemas.path import (
    ChildPathsCreate,
    MergePathCreate,
    MergePathUpdate,
    PathCreate,
    PathDeletionResponse,
    PathResponse,
    PathsConnect,
    PathTreeResponse,
)
from processflow.services import path_repository

router = APIRouter(prefix="/paths", tags=["Paths"])


@router.post("", response_model=PathTreeResponse)
def create_path(payload: PathCreate):
    with translate_errors():
        path = path_repository.create_path(payload.workflow_id, payload.name)
        node = path_repository.get_path_node(path.id)
    return path_tree_response(node)


@router.post("/connect", response_model=PathTreeResponse)
def connect_paths(payload: PathsConnect):
    with translate_errors():
        path_repository.connect_paths(
            payload.child_path_ids,
            payload.destination_path_id,
            expected_revision=payload.expected_revision,
        )
        node = path_repository.get_path_node(payload.destination_path_id)
    return path_tree_response(node)


@router.post("/merge", response_model=PathTreeResponse)
def create_merge_path(payload: MergePathCreate):
    with translate_errors():
        path = path_repository.create_merge_path(payload.workflow_id, payload.name, payload.parent_block_ids)
        node = path_repository.get_path_node(path.id)
    return path_tree_response(node)


@router.patch("/merge/{path_id}", response_model=Optional[PathTreeResponse])
def update_merge_path(path_id: int, payload: MergePathUpdate):
    with translate_errors():
        path = path_repository.update_merge_parents(
            path_id,
            connect=payload.parents_to_connect,
            disconnect=payload.parents_to_disconnect,
        )
        if path is None:
            return None
        node = path_repository.get_path_node(path.id)
    return path_tree_response(node)


@router.get("/{path_id}", response_model=PathTreeResponse)
def get_path(path_id: int):
    with translate_errors():
        node = path_repository.get_path_node(path_id)
    return path_tree_response(node)


@router.post("/{path_id}/children", response_model=List[PathResponse])
def create_child_paths(path_id: int, payload: ChildPathsCreate):
    with translate_errors():
        return path_repository.create_child_paths(
            path_id,
            payload.names,
            expected_revision=payload.expected_revision,
        )


@router.delete("/{path_id}", response_model=PathDeletionResponse)
def delete_path(path_id: int, expected_revision: Optional[int] = Query(default=None)):
    with translate_errors():
        result = path_repository.delete_path(path_id, expected_revision=expected_revision)

    return PathDeletionResponse(deleted_path_ids=result.path_ids, deleted_block_ids=result.block_ids)
