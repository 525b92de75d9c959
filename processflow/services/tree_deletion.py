import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from processflow.models.block import Block
from processflow.models.path_parent_block import PathParentBlock
from processflow.services import tree_classifier, tree_store
from processflow.services.blob_store import BlobStore, queue_release
from processflow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class SubtreeDeletion:
    path_ids: List[int] = field(default_factory=list)
    block_ids: List[int] = field(default_factory=list)
    # blocks outside the subtree that lost at least one child path
    orphaned_parent_ids: List[int] = field(default_factory=list)


def _block_ids(db: Session, path_id: int) -> List[int]:
    rows = db.query(Block.id).filter(Block.path_id == int(path_id)).all()
    return [row[0] for row in rows]


def collect_subtree(db: Session, path_ids: Iterable[int]) -> Tuple[List[int], Set[int]]:
    """
    Walk the branch edges below path_ids with an explicit stack.

    Returns doomed path ids in discovery order (every parent before its
    children) and the ids of every block inside them. A merge path is only
    doomed once all of its parent blocks are; until then it waits.
    """
    order: List[int] = []
    seen: Set[int] = set()
    doomed_blocks: Set[int] = set()
    waiting: Set[int] = set()

    stack = list(dict.fromkeys(int(p) for p in path_ids))
    stack.reverse()

    while stack:
        path_id = stack.pop()
        if path_id in seen:
            continue
        seen.add(path_id)
        order.append(path_id)

        block_ids = _block_ids(db, path_id)
        doomed_blocks.update(block_ids)
        for child_ids in tree_store.child_path_ids_by_block(db, block_ids).values():
            waiting.update(c for c in child_ids if c not in seen)

        for candidate in sorted(waiting):
            if set(tree_store.parent_block_ids(db, candidate)) <= doomed_blocks:
                waiting.discard(candidate)
                stack.append(candidate)

    return order, doomed_blocks


def delete_subtree(db: Session, path_ids: Iterable[int]) -> SubtreeDeletion:
    """
    Delete paths, their nested child paths and all their blocks, children
    first. Blob references are queued on the session for release after
    commit. Surviving parents are reported, not reclassified.
    """
    order, doomed_blocks = collect_subtree(db, path_ids)
    result = SubtreeDeletion()
    orphaned: Set[int] = set()

    for path_id in reversed(order):
        path = tree_store.get_path(db, path_id)

        for parent_id in tree_store.parent_block_ids(db, path_id):
            if parent_id not in doomed_blocks:
                orphaned.add(parent_id)

        db.query(PathParentBlock).filter(PathParentBlock.path_id == path_id).delete(synchronize_session="fetch")

        for block in tree_store.path_blocks(db, path_id):
            # edges to merge paths that keep other parents
            db.query(PathParentBlock).filter(PathParentBlock.block_id == block.id).delete(
                synchronize_session="fetch"
            )
            queue_release(db, tree_store.block_blob_refs(block))
            result.block_ids.append(block.id)
            db.delete(block)

        db.flush()
        db.delete(path)
        db.flush()
        result.path_ids.append(path_id)

    result.orphaned_parent_ids = sorted(orphaned)

    if result.path_ids:
        logger.info(
            "Deleted path subtree",
            extra={
                "path_ids": result.path_ids,
                "block_count": len(result.block_ids),
                "orphaned_parent_ids": result.orphaned_parent_ids,
            },
        )

    return result


def reclassify_blocks_paths(db: Session, block_ids: Iterable[int], *, skip_block_ids: Iterable[int] = ()) -> List[int]:
    """Run the classifier on the paths owning the given blocks."""
    skip = {int(b) for b in skip_block_ids}
    wanted = [int(b) for b in block_ids if int(b) not in skip]
    if not wanted:
        return []

    rows = db.query(Block.path_id).filter(Block.id.in_(wanted)).distinct().all()
    repaired = []
    for (path_id,) in sorted(rows):
        if tree_classifier.repair(db, path_id):
            repaired.append(path_id)
    return repaired


def delete_paths(
    path_ids: Iterable[int],
    *,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
) -> SubtreeDeletion:
    ids = [int(p) for p in path_ids]
    with unit_of_work(db, blob_store=blob_store) as session:
        for path_id in ids:
            tree_store.get_path(session, path_id)
        result = delete_subtree(session, ids)
        reclassify_blocks_paths(session, result.orphaned_parent_ids)
        return result
