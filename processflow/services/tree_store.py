"""
Keyed accessors over the workflow tree tables.

The tree is never held as linked objects: every hop (path -> blocks,
block -> child paths, path -> parent blocks) is a query by integer id.
"""
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from processflow.core.errors import ConcurrencyConflict, NotFound
from processflow.models.block import Block, BlockType, TERMINAL_TYPES
from processflow.models.path import Path
from processflow.models.path_parent_block import PathParentBlock
from processflow.models.workflow import Workflow
from processflow.services.blob_store import is_custom_icon


def get_workflow(db: Session, workflow_id: int) -> Workflow:
    workflow = db.query(Workflow).filter(Workflow.id == int(workflow_id)).first()
    if workflow is None:
        raise NotFound(f"Workflow {workflow_id} not found")
    return workflow


def get_path(db: Session, path_id: int) -> Path:
    path = db.query(Path).filter(Path.id == int(path_id)).first()
    if path is None:
        raise NotFound(f"Path {path_id} not found")
    return path


def get_block(db: Session, block_id: int) -> Block:
    block = db.query(Block).filter(Block.id == int(block_id)).first()
    if block is None:
        raise NotFound(f"Block {block_id} not found")
    return block


def path_blocks(db: Session, path_id: int) -> List[Block]:
    return (
        db.query(Block)
        .filter(Block.path_id == int(path_id))
        .order_by(Block.position.asc(), Block.id.asc())
        .all()
    )


def terminal_block(blocks: Iterable[Block]) -> Optional[Block]:
    for block in blocks:
        if block.type in TERMINAL_TYPES:
            return block
    return None


def child_path_ids(db: Session, block_id: int) -> List[int]:
    rows = (
        db.query(PathParentBlock.path_id)
        .filter(PathParentBlock.block_id == int(block_id))
        .order_by(PathParentBlock.path_id.asc())
        .all()
    )
    return [row[0] for row in rows]


def child_path_ids_by_block(db: Session, block_ids: Iterable[int]) -> Dict[int, List[int]]:
    ids = [int(b) for b in block_ids]
    result: Dict[int, List[int]] = {b: [] for b in ids}
    if not ids:
        return result
    rows = (
        db.query(PathParentBlock.block_id, PathParentBlock.path_id)
        .filter(PathParentBlock.block_id.in_(ids))
        .order_by(PathParentBlock.path_id.asc())
        .all()
    )
    for block_id, path_id in rows:
        result[block_id].append(path_id)
    return result


def parent_block_ids(db: Session, path_id: int) -> List[int]:
    rows = (
        db.query(PathParentBlock.block_id)
        .filter(PathParentBlock.path_id == int(path_id))
        .order_by(PathParentBlock.block_id.asc())
        .all()
    )
    return [row[0] for row in rows]


def is_root_path(db: Session, path_id: int) -> bool:
    get_path(db, path_id)
    return not parent_block_ids(db, path_id)


def first_root_path(db: Session, workflow_id: int) -> Optional[Path]:
    linked = select(PathParentBlock.path_id)
    return (
        db.query(Path)
        .filter(Path.workflow_id == int(workflow_id), ~Path.id.in_(linked))
        .order_by(Path.id.asc())
        .first()
    )


def shift_positions(db: Session, path_id: int, from_position: int, delta: int, *, strict: bool = False) -> int:
    """Add delta to every block at position >= from_position (> when strict)."""
    q = db.query(Block).filter(Block.path_id == int(path_id))
    if strict:
        q = q.filter(Block.position > int(from_position))
    else:
        q = q.filter(Block.position >= int(from_position))
    return q.update({Block.position: Block.position + int(delta)}, synchronize_session="fetch")


def renumber(blocks: List[Block]) -> bool:
    changed = False
    for index, block in enumerate(blocks):
        if block.position != index:
            block.position = index
            changed = True
    return changed


def claim_revision(db: Session, path_id: int, expected_revision: Optional[int] = None) -> None:
    """
    Bump the path revision. With expected_revision the bump is conditional, so
    a concurrent writer that got there first makes this one fail.
    """
    q = db.query(Path).filter(Path.id == int(path_id))
    if expected_revision is not None:
        q = q.filter(Path.revision == int(expected_revision))

    updated = q.update({Path.revision: Path.revision + 1}, synchronize_session="fetch")
    if updated:
        return

    path = get_path(db, path_id)
    raise ConcurrencyConflict(path.id, int(expected_revision), int(path.revision))


def new_begin_block(path: Path) -> Block:
    return Block(
        workflow_id=path.workflow_id,
        path_id=path.id,
        type=BlockType.BEGIN.value,
        position=0,
        icon="/step-icons/default-icons/begin.svg",
        description="",
    )


def new_last_block(path: Path, position: int) -> Block:
    return Block(
        workflow_id=path.workflow_id,
        path_id=path.id,
        type=BlockType.LAST.value,
        position=position,
        icon="/step-icons/default-icons/end.svg",
        description="",
    )


def block_blob_refs(block: Block) -> List[str]:
    refs = [block.image, block.original_image]
    if is_custom_icon(block.icon):
        refs.append(block.icon)
    return [ref for ref in refs if ref]
