"""
Branch/merge classification of a path's terminal block.

A path is canonical when it starts with exactly one BEGIN block, ends with
exactly one terminal block whose type matches its number of child paths,
and its positions are 0..N-1. ``repair`` brings a path to that shape and is
idempotent; ``path_violations`` only reports.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from processflow.models.block import Block, BlockType, TERMINAL_TYPES
from processflow.models.path_parent_block import PathParentBlock
from processflow.services import tree_store
from processflow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_DELAY_FIELDS = ("delay_seconds", "delay_type", "delay_event")


def is_terminal_type(block_type: Optional[str]) -> bool:
    return block_type in TERMINAL_TYPES


def terminal_type_for(child_count: int, current: Optional[str] = None) -> str:
    if child_count >= 2:
        return BlockType.PATH.value
    if child_count == 1:
        return BlockType.MERGE.value
    if current in (BlockType.LAST.value, BlockType.END.value):
        return current
    return BlockType.LAST.value


def _adopt_child_links(db: Session, from_block_id: int, to_block_id: int) -> None:
    """Move the branch edges of a demoted terminal onto the surviving one."""
    links = db.query(PathParentBlock).filter(PathParentBlock.block_id == from_block_id).all()
    existing = set(tree_store.child_path_ids(db, to_block_id))
    for link in links:
        path_id = link.path_id
        db.delete(link)
        if path_id not in existing:
            db.add(PathParentBlock(path_id=path_id, block_id=to_block_id))
    db.flush()


def repair(db: Session, path_id: int) -> bool:
    path = tree_store.get_path(db, path_id)
    blocks: List[Block] = tree_store.path_blocks(db, path.id)
    changed = False

    # 1. BEGIN first, exactly once
    begins = [b for b in blocks if b.type == BlockType.BEGIN.value]
    if not begins:
        begin = tree_store.new_begin_block(path)
        db.add(begin)
        blocks.insert(0, begin)
        changed = True
    else:
        begin = begins[0]
        for extra in begins[1:]:
            extra.type = BlockType.STEP.value
            changed = True
        if blocks[0] is not begin:
            blocks.remove(begin)
            blocks.insert(0, begin)
            changed = True

    # 2-3. terminal last, exactly once
    terminals = [b for b in blocks if b.type in TERMINAL_TYPES]
    if not terminals:
        terminal = tree_store.new_last_block(path, len(blocks))
        db.add(terminal)
        blocks.append(terminal)
        changed = True
    else:
        children = tree_store.child_path_ids_by_block(db, [b.id for b in terminals])
        # a terminal that owns branches wins over one that does not
        terminal = max(terminals, key=lambda b: (len(children[b.id]) > 0, b.position))
        for extra in terminals:
            if extra is not terminal:
                extra.type = BlockType.STEP.value
                changed = True
        if blocks[-1] is not terminal:
            blocks.remove(terminal)
            blocks.append(terminal)
            changed = True

    db.flush()

    # branch edges only hang off the terminal
    owners = tree_store.child_path_ids_by_block(db, [b.id for b in blocks if b is not terminal])
    for block_id, child_ids in owners.items():
        if child_ids:
            _adopt_child_links(db, block_id, terminal.id)
            changed = True

    # 4-6. type follows the number of child paths
    child_count = len(tree_store.child_path_ids(db, terminal.id))
    expected_type = terminal_type_for(child_count, terminal.type)
    if terminal.type != expected_type:
        terminal.type = expected_type
        changed = True

    for block in blocks:
        if block.type != BlockType.DELAY.value and any(getattr(block, f) is not None for f in _DELAY_FIELDS):
            for f in _DELAY_FIELDS:
                setattr(block, f, None)
            changed = True

    # 7. dense positions in final order
    if tree_store.renumber(blocks):
        changed = True

    if changed:
        db.flush()
        tree_store.claim_revision(db, path.id)
        logger.info(
            "Repaired path shape",
            extra={"path_id": path.id, "terminal_block_id": terminal.id, "terminal_type": terminal.type},
        )

    return changed


def repair_path(path_id: int, *, db: Optional[Session] = None) -> bool:
    with unit_of_work(db) as session:
        return repair(session, path_id)


def path_violations(db: Session, path_id: int) -> List[str]:
    blocks = tree_store.path_blocks(db, path_id)
    problems: List[str] = []

    positions = sorted(b.position for b in blocks)
    if positions != list(range(len(blocks))):
        problems.append(f"positions are not dense: {positions}")

    begins = [b for b in blocks if b.type == BlockType.BEGIN.value]
    if len(begins) != 1:
        problems.append(f"expected one BEGIN block, found {len(begins)}")
    elif begins[0].position != 0:
        problems.append(f"BEGIN block {begins[0].id} is at position {begins[0].position}")

    terminals = [b for b in blocks if b.type in TERMINAL_TYPES]
    if len(terminals) != 1:
        problems.append(f"expected one terminal block, found {len(terminals)}")
    else:
        terminal = terminals[0]
        if blocks and terminal.position != max(b.position for b in blocks):
            problems.append(f"terminal block {terminal.id} is not last")
        child_count = len(tree_store.child_path_ids(db, terminal.id))
        if terminal_type_for(child_count, terminal.type) != terminal.type:
            problems.append(f"terminal block {terminal.id} is {terminal.type} with {child_count} child paths")

    for block in blocks:
        if block.type in TERMINAL_TYPES or not tree_store.child_path_ids(db, block.id):
            continue
        problems.append(f"non-terminal block {block.id} owns child paths")

    for block in blocks:
        has_delay = any(getattr(block, f) is not None for f in _DELAY_FIELDS)
        if block.type == BlockType.DELAY.value and block.delay_type is None:
            problems.append(f"DELAY block {block.id} has no delay_type")
        if block.type != BlockType.DELAY.value and has_delay:
            problems.append(f"{block.type} block {block.id} carries delay fields")

    return problems
