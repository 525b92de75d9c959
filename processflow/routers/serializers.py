from typing import List

from processflow.models.block import Block
from processflow.schemas.block import BlockResponse
from processflow.schemas.path import PathTreeResponse
from processflow.services.path_repository import PathNode


def block_response(block: Block, child_path_ids: List[int]) -> BlockResponse:
    response = BlockResponse.model_validate(block)
    response.child_path_ids = list(child_path_ids)
    return response


def path_tree_response(node: PathNode) -> PathTreeResponse:
    return PathTreeResponse(
        id=node.path.id,
        workflow_id=node.path.workflow_id,
        name=node.path.name,
        revision=node.path.revision,
        created_at=node.path.created_at,
        parent_block_ids=node.parent_block_ids,
        blocks=[block_response(b.block, b.child_path_ids) for b in node.blocks],
    )
