from typing import List, Optional

from fastapi import APIRouter, Query

from processflow.deps.errors import translate_errors
from processflow.routers.serializers import block_response
from processflow.schemas.block import (
    BlockCreate,
    BlockDeletionResponse,
    BlockDuplicate,
    BlockMove,
    BlockReorder,
    BlockResponse,
    BlockUpdate,
    PathEndUpdate,
)
from processflow.services import block_repository

router = APIRouter(prefix="/blocks", tags=["Blocks"])


@router.post("", response_model=BlockResponse)
def insert_block(payload: BlockCreate):
    fields = payload.model_dump(exclude={"path_id", "position", "expected_revision"})

    with translate_errors():
        created = block_repository.insert_block(
            payload.path_id,
            payload.position,
            fields,
            expected_revision=payload.expected_revision,
        )
    return block_response(created.block, created.child_path_ids)


@router.post("/move", response_model=List[BlockResponse])
def move_blocks(payload: BlockMove):
    with translate_errors():
        blocks = block_repository.move_blocks(
            payload.block_ids,
            payload.destination_path_id,
            expected_revision=payload.expected_revision,
        )
    return [block_response(b, []) for b in blocks]


@router.post("/reorder", response_model=List[BlockResponse])
def reorder_blocks(payload: BlockReorder):
    with translate_errors():
        blocks = block_repository.reorder_path(
            payload.path_id,
            payload.block_ids,
            expected_revision=payload.expected_revision,
        )
    return [block_response(b, []) for b in blocks]


@router.patch("/{block_id}", response_model=BlockResponse)
def update_block(block_id: int, payload: BlockUpdate):
    fields = payload.model_dump(exclude_unset=True, exclude={"expected_revision"})

    with translate_errors():
        block = block_repository.update_block(block_id, fields, expected_revision=payload.expected_revision)
    return block_response(block, [])


@router.delete("/{block_id}", response_model=BlockDeletionResponse)
def delete_block(block_id: int, expected_revision: Optional[int] = Query(default=None)):
    with translate_errors():
        result = block_repository.delete_block(block_id, expected_revision=expected_revision)

    return BlockDeletionResponse(
        block_id=result.block_id,
        path_id=result.path_id,
        deleted_path_ids=result.deleted_path_ids,
    )


@router.post("/{block_id}/duplicate", response_model=BlockResponse)
def duplicate_block(block_id: int, payload: BlockDuplicate):
    with translate_errors():
        created = block_repository.duplicate_block(
            block_id,
            position=payload.position,
            path_id=payload.path_id,
            expected_revision=payload.expected_revision,
        )
    return block_response(created.block, created.child_path_ids)


@router.patch("/{block_id}/end", response_model=BlockResponse)
def set_path_end(block_id: int, payload: PathEndUpdate):
    with translate_errors():
        block = block_repository.set_path_end(block_id, payload.is_end, expected_revision=payload.expected_revision)
    return block_response(block, [])
