import logging
import posixpath
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from processflow.core.errors import InvalidOperation
from processflow.models.block import Block, BlockType, DelayType, TERMINAL_TYPES
from processflow.models.path_parent_block import PathParentBlock
from processflow.services import tree_classifier, tree_deletion, tree_store
from processflow.services.blob_store import (
    BlobStore,
    get_blob_store,
    is_custom_icon,
    queue_release,
    queue_rollback_release,
)
from processflow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

INSERTABLE_TYPES = (BlockType.STEP.value, BlockType.DELAY.value)
CONTENT_FIELDS = ("title", "description", "icon", "image", "original_image")
DELAY_FIELDS = ("delay_seconds", "delay_type", "delay_event")


@dataclass
class BlockWithBranches:
    block: Block
    child_path_ids: List[int] = field(default_factory=list)


@dataclass
class BlockDeletion:
    block_id: int
    path_id: int
    deleted_path_ids: List[int] = field(default_factory=list)


def _delay_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    delay_type = fields.get("delay_type") or DelayType.FIXED_DURATION.value
    delay_seconds = fields.get("delay_seconds")
    delay_event = fields.get("delay_event")

    if delay_type not in (DelayType.FIXED_DURATION.value, DelayType.WAIT_FOR_EVENT.value):
        raise ValueError(f"Unknown delay_type: {delay_type}")

    if delay_seconds is not None and int(delay_seconds) < 0:
        raise ValueError("delay_seconds must be a non-negative number")

    if delay_type == DelayType.FIXED_DURATION.value:
        if delay_seconds is None:
            raise ValueError("A FIXED_DURATION delay requires delay_seconds")
        delay_event = None

    if delay_type == DelayType.WAIT_FOR_EVENT.value:
        delay_event = (delay_event or "").strip()
        if not delay_event:
            raise ValueError("A WAIT_FOR_EVENT delay requires delay_event")

    return {
        "delay_seconds": None if delay_seconds is None else int(delay_seconds),
        "delay_type": delay_type,
        "delay_event": delay_event,
    }


def _create_in_path(db: Session, path_id: int, position: int, fields: Dict[str, Any]) -> Block:
    path = tree_store.get_path(db, path_id)

    block_type = fields.get("type") or BlockType.STEP.value
    if block_type not in INSERTABLE_TYPES:
        raise InvalidOperation(f"Blocks of type {block_type} cannot be inserted")

    blocks = tree_store.path_blocks(db, path.id)
    incomplete = tree_store.terminal_block(blocks) is None or not any(
        b.type == BlockType.BEGIN.value for b in blocks
    )
    if blocks:
        # position 0 belongs to BEGIN; the terminal is pushed, never passed
        highest = max(b.position for b in blocks)
        target = max(1, min(int(position), highest))
    else:
        target = 0

    tree_store.shift_positions(db, path.id, target, 1)

    delay = {f: None for f in DELAY_FIELDS}
    if block_type == BlockType.DELAY.value:
        delay = _delay_values(fields)

    block = Block(
        workflow_id=path.workflow_id,
        path_id=path.id,
        type=block_type,
        position=target,
        **{f: fields.get(f) for f in CONTENT_FIELDS},
        **delay,
    )
    db.add(block)
    db.flush()

    if incomplete:
        tree_classifier.repair(db, path.id)
    return block


def insert_block(
    path_id: int,
    position: int,
    fields: Dict[str, Any],
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> BlockWithBranches:
    with unit_of_work(db) as session:
        tree_store.get_path(session, path_id)
        tree_store.claim_revision(session, path_id, expected_revision)

        block = _create_in_path(session, path_id, position, fields)

        logger.info(
            "Inserted block",
            extra={"block_id": block.id, "path_id": block.path_id, "position": block.position, "type": block.type},
        )
        return BlockWithBranches(block=block, child_path_ids=tree_store.child_path_ids(session, block.id))


def delete_block(
    block_id: int,
    *,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
    expected_revision: Optional[int] = None,
) -> BlockDeletion:
    with unit_of_work(db, blob_store=blob_store) as session:
        block = tree_store.get_block(session, block_id)
        path_id = block.path_id

        if block.type == BlockType.BEGIN.value and tree_store.is_root_path(session, path_id):
            raise InvalidOperation("The BEGIN block of the workflow's root path cannot be deleted")

        tree_store.claim_revision(session, path_id, expected_revision)

        # branches die with the block; merge paths with other parents are only detached
        doomed = []
        for child_id in tree_store.child_path_ids(session, block.id):
            if set(tree_store.parent_block_ids(session, child_id)) == {block.id}:
                doomed.append(child_id)
        subtree = tree_deletion.delete_subtree(session, doomed)

        session.query(PathParentBlock).filter(PathParentBlock.block_id == block.id).delete(
            synchronize_session="fetch"
        )

        reshapes_path = block.type == BlockType.BEGIN.value or block.type in TERMINAL_TYPES
        deleted_position = block.position

        queue_release(session, tree_store.block_blob_refs(block))
        session.delete(block)
        session.flush()

        tree_store.shift_positions(session, path_id, deleted_position, -1, strict=True)

        if reshapes_path:
            tree_classifier.repair(session, path_id)
        tree_deletion.reclassify_blocks_paths(
            session, subtree.orphaned_parent_ids, skip_block_ids=[block_id]
        )

        logger.info(
            "Deleted block",
            extra={"block_id": block_id, "path_id": path_id, "deleted_path_ids": subtree.path_ids},
        )
        return BlockDeletion(block_id=block_id, path_id=path_id, deleted_path_ids=subtree.path_ids)


def update_block(
    block_id: int,
    fields: Dict[str, Any],
    *,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
    expected_revision: Optional[int] = None,
) -> Block:
    with unit_of_work(db, blob_store=blob_store) as session:
        block = tree_store.get_block(session, block_id)

        new_type = fields.get("type") or block.type
        if new_type != block.type and (new_type not in INSERTABLE_TYPES or block.type not in INSERTABLE_TYPES):
            raise InvalidOperation(f"Cannot change a {block.type} block into {new_type}")

        if new_type == BlockType.DELAY.value:
            current = {f: getattr(block, f) for f in DELAY_FIELDS}
            current.update({f: fields[f] for f in DELAY_FIELDS if f in fields})
            delay = _delay_values(current)
        else:
            delay = {f: None for f in DELAY_FIELDS}

        tree_store.claim_revision(session, block.path_id, expected_revision)

        released = []
        if "image" in fields and block.image and fields["image"] != block.image:
            # the original upload stays while the block still points at it
            new_original = fields.get("original_image", block.original_image)
            if block.image != new_original:
                released.append(block.image)
        if "original_image" in fields and block.original_image and fields["original_image"] != block.original_image:
            new_image = fields.get("image", block.image)
            if block.original_image != new_image:
                released.append(block.original_image)
        if "icon" in fields and fields["icon"] != block.icon and is_custom_icon(block.icon):
            released.append(block.icon)
        queue_release(session, released)

        for f in CONTENT_FIELDS:
            if f in fields:
                setattr(block, f, fields[f])
        for f, value in delay.items():
            setattr(block, f, value)
        block.type = new_type

        session.flush()
        return block


def duplicate_block(
    block_id: int,
    *,
    position: Optional[int] = None,
    path_id: Optional[int] = None,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
    expected_revision: Optional[int] = None,
) -> BlockWithBranches:
    store = blob_store or get_blob_store()

    with unit_of_work(db, blob_store=store) as session:
        source = tree_store.get_block(session, block_id)
        if source.type not in INSERTABLE_TYPES:
            raise InvalidOperation(f"Blocks of type {source.type} cannot be duplicated")

        target = tree_store.get_path(session, path_id if path_id is not None else source.path_id)
        if target.workflow_id != source.workflow_id:
            raise InvalidOperation("Blocks can only be duplicated within their workflow")
        target_position = int(position) if position is not None else source.position + 1

        tree_store.claim_revision(session, target.id, expected_revision)

        new_image = None
        if source.image:
            folder, name = posixpath.split(source.image)
            candidate = posixpath.join(folder, f"{int(time.time() * 1000)}-{name}")
            try:
                store.copy(source.image, candidate)
                new_image = candidate
                queue_rollback_release(session, [candidate])
            except Exception:
                logger.exception("Image copy failed", extra={"block_id": source.id, "image": source.image})

        fields = {f: getattr(source, f) for f in DELAY_FIELDS}
        fields.update(
            type=source.type,
            title=f"{source.title or ''} (copy)",
            description=source.description,
            icon=source.icon,
            image=new_image,
        )

        block = _create_in_path(session, target.id, target_position, fields)
        return BlockWithBranches(block=block, child_path_ids=[])


def move_blocks(
    block_ids: Sequence[int],
    destination_path_id: int,
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> List[Block]:
    """Move blocks, in order, to just before the destination's terminal block."""
    ids = list(dict.fromkeys(int(b) for b in block_ids))
    if not ids:
        raise ValueError("block_ids must not be empty")

    with unit_of_work(db) as session:
        destination = tree_store.get_path(session, destination_path_id)
        dest_blocks = tree_store.path_blocks(session, destination.id)
        terminal = tree_store.terminal_block(dest_blocks)
        if terminal is None:
            raise InvalidOperation("Destination path has no terminal block")

        moving = [tree_store.get_block(session, b) for b in ids]
        for block in moving:
            if block.type not in INSERTABLE_TYPES:
                raise InvalidOperation(f"Blocks of type {block.type} cannot be moved")
            if block.workflow_id != destination.workflow_id:
                raise InvalidOperation("Blocks can only move within their workflow")

        tree_store.claim_revision(session, destination.id, expected_revision)
        source_path_ids = sorted({b.path_id for b in moving} - {destination.id})
        for source_id in source_path_ids:
            tree_store.claim_revision(session, source_id)

        staying = [b for b in dest_blocks if b.id not in set(ids)]
        cut = staying.index(terminal)
        ordered = staying[:cut] + moving + staying[cut:]
        for block in moving:
            block.path_id = destination.id
        tree_store.renumber(ordered)
        session.flush()

        for source_id in source_path_ids:
            tree_store.renumber(tree_store.path_blocks(session, source_id))
        session.flush()

        logger.info(
            "Moved blocks",
            extra={"block_ids": ids, "destination_path_id": destination.id, "source_path_ids": source_path_ids},
        )
        return ordered


def reorder_path(
    path_id: int,
    ordered_block_ids: Sequence[int],
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> List[Block]:
    with unit_of_work(db) as session:
        blocks = tree_store.path_blocks(session, path_id)
        begin = next((b for b in blocks if b.type == BlockType.BEGIN.value), None)
        terminal = tree_store.terminal_block(blocks)
        if begin is None or terminal is None:
            raise InvalidOperation(f"Path {path_id} needs repair before it can be reordered")

        inner = {b.id: b for b in blocks if b is not begin and b is not terminal}
        requested = [int(b) for b in ordered_block_ids]
        if len(set(requested)) != len(requested) or set(requested) != set(inner):
            raise InvalidOperation("ordered_block_ids must list every inner block of the path exactly once")

        tree_store.claim_revision(session, path_id, expected_revision)

        ordered = [begin] + [inner[b] for b in requested] + [terminal]
        tree_store.renumber(ordered)
        session.flush()
        return ordered


def set_path_end(
    block_id: int,
    is_end: bool,
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> Block:
    """Mark a childless terminal as the workflow's end (END) or a plain path end (LAST)."""
    with unit_of_work(db) as session:
        block = tree_store.get_block(session, block_id)
        if block.type not in (BlockType.LAST.value, BlockType.END.value):
            raise InvalidOperation("Only a terminal block without branches can be marked as an end")

        tree_store.claim_revision(session, block.path_id, expected_revision)
        block.type = BlockType.END.value if is_end else BlockType.LAST.value
        session.flush()
        return block
