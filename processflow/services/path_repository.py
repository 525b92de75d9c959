import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from processflow.core.errors import InvalidOperation
from processflow.models.block import Block, TERMINAL_TYPES
from processflow.models.path import Path
from processflow.models.path_parent_block import PathParentBlock
from processflow.models.workflow import Workflow
from processflow.services import tree_classifier, tree_deletion, tree_store
from processflow.services.blob_store import BlobStore
from processflow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

DEFAULT_PATH_NAME = "First Path"


@dataclass
class BlockNode:
    block: Block
    child_path_ids: List[int] = field(default_factory=list)


@dataclass
class PathNode:
    path: Path
    parent_block_ids: List[int] = field(default_factory=list)
    blocks: List[BlockNode] = field(default_factory=list)


def _require_name(name: Optional[str]) -> str:
    cleaned = " ".join(str(name or "").split())
    if not cleaned:
        raise ValueError("Path name is required")
    return cleaned


def _new_minimal_path(db: Session, workflow_id: int, name: str) -> Path:
    path = Path(workflow_id=int(workflow_id), name=_require_name(name), revision=1)
    db.add(path)
    db.flush()

    db.add(tree_store.new_begin_block(path))
    db.add(tree_store.new_last_block(path, 1))
    db.flush()
    return path


def _ancestor_path_ids(db: Session, path_id: int) -> set:
    found = set()
    stack = [int(path_id)]
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        parents = tree_store.parent_block_ids(db, current)
        if parents:
            rows = db.query(Block.path_id).filter(Block.id.in_(parents)).all()
            stack.extend(row[0] for row in rows)
    return found


def _require_childless_terminal(db: Session, block_id: int, workflow_id: int) -> Block:
    block = tree_store.get_block(db, block_id)
    if block.workflow_id != int(workflow_id):
        raise InvalidOperation(f"Block {block.id} belongs to another workflow")
    if block.type not in TERMINAL_TYPES:
        raise InvalidOperation(f"Block {block.id} is not the terminal block of its path")
    if tree_store.child_path_ids(db, block.id):
        raise InvalidOperation(f"Block {block.id} already has child paths")
    return block


def is_root_path(path_id: int, *, db: Optional[Session] = None) -> bool:
    with unit_of_work(db) as session:
        return tree_store.is_root_path(session, path_id)


def create_workflow(name: str, *, db: Optional[Session] = None) -> Workflow:
    cleaned = " ".join(str(name or "").split())
    if not cleaned:
        raise ValueError("Workflow name is required")

    with unit_of_work(db) as session:
        workflow = Workflow(name=cleaned)
        session.add(workflow)
        session.flush()
        _new_minimal_path(session, workflow.id, DEFAULT_PATH_NAME)

        logger.info("Created workflow", extra={"workflow_id": workflow.id})
        return workflow


def create_default_path(workflow_id: int, *, db: Optional[Session] = None) -> Path:
    """Give a workflow its "First Path" when it has none; otherwise return the existing one."""
    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)

        existing = tree_store.first_root_path(session, workflow_id)
        if existing is not None:
            return existing

        path = _new_minimal_path(session, workflow_id, DEFAULT_PATH_NAME)
        logger.info("Created default path", extra={"workflow_id": int(workflow_id), "path_id": path.id})
        return path


def create_path(workflow_id: int, name: str, *, db: Optional[Session] = None) -> Path:
    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)
        return _new_minimal_path(session, workflow_id, name)


def connect_paths(
    child_path_ids: Sequence[int],
    destination_path_id: int,
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> Block:
    """Re-parent paths under the terminal block of the destination path."""
    ids = list(dict.fromkeys(int(p) for p in child_path_ids))
    if not ids:
        raise ValueError("child_path_ids must not be empty")

    with unit_of_work(db) as session:
        destination = tree_store.get_path(session, destination_path_id)
        terminal = tree_store.terminal_block(tree_store.path_blocks(session, destination.id))
        if terminal is None:
            raise InvalidOperation("Destination path has no terminal block")

        first = tree_store.first_root_path(session, destination.workflow_id)
        if first is not None and first.id in ids:
            raise InvalidOperation("The workflow's first path cannot become a child path")

        ancestors = _ancestor_path_ids(session, destination.id)
        for child_id in ids:
            child = tree_store.get_path(session, child_id)
            if child.workflow_id != destination.workflow_id:
                raise InvalidOperation(f"Path {child.id} belongs to another workflow")
            if child.id in ancestors:
                raise InvalidOperation(f"Connecting path {child.id} would create a cycle")

        tree_store.claim_revision(session, destination.id, expected_revision)

        previous_parents = set()
        for child_id in ids:
            previous_parents.update(tree_store.parent_block_ids(session, child_id))

        session.query(PathParentBlock).filter(PathParentBlock.path_id.in_(ids)).delete(synchronize_session="fetch")
        for child_id in ids:
            session.add(PathParentBlock(path_id=child_id, block_id=terminal.id))
        session.flush()

        tree_classifier.repair(session, destination.id)
        tree_deletion.reclassify_blocks_paths(session, previous_parents, skip_block_ids=[terminal.id])

        logger.info(
            "Connected paths",
            extra={"child_path_ids": ids, "destination_path_id": destination.id, "parent_block_id": terminal.id},
        )
        return terminal


def create_child_paths(
    path_id: int,
    names: Sequence[str],
    *,
    db: Optional[Session] = None,
    expected_revision: Optional[int] = None,
) -> List[Path]:
    if not names:
        raise ValueError("At least one path name is required")

    with unit_of_work(db) as session:
        parent = tree_store.get_path(session, path_id)
        created = [_new_minimal_path(session, parent.workflow_id, name) for name in names]
        connect_paths(
            [p.id for p in created],
            parent.id,
            db=session,
            expected_revision=expected_revision,
        )
        return created


def create_merge_path(
    workflow_id: int,
    name: str,
    parent_block_ids: Sequence[int],
    *,
    db: Optional[Session] = None,
) -> Path:
    """A path that several path ends flow into."""
    ids = list(dict.fromkeys(int(b) for b in parent_block_ids))
    if not ids:
        raise ValueError("parent_block_ids must not be empty")

    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)
        for block_id in ids:
            _require_childless_terminal(session, block_id, workflow_id)

        path = _new_minimal_path(session, workflow_id, name)
        for block_id in ids:
            session.add(PathParentBlock(path_id=path.id, block_id=block_id))
        session.flush()

        tree_deletion.reclassify_blocks_paths(session, ids)

        logger.info("Created merge path", extra={"path_id": path.id, "parent_block_ids": ids})
        return path


def update_merge_parents(
    path_id: int,
    connect: Sequence[int] = (),
    disconnect: Sequence[int] = (),
    *,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
) -> Optional[Path]:
    """
    Edit the parents of a merge path. Returns None when the last parent was
    disconnected, in which case the merge path and its subtree are deleted.
    """
    to_connect = [int(b) for b in dict.fromkeys(connect)]
    to_disconnect = [int(b) for b in dict.fromkeys(disconnect)]

    with unit_of_work(db, blob_store=blob_store) as session:
        path = tree_store.get_path(session, path_id)
        current = set(tree_store.parent_block_ids(session, path.id))
        if not current:
            raise InvalidOperation(f"Path {path.id} has no parent blocks and is not a merge path")

        below = _descendant_path_ids(session, path.id)
        for block_id in to_connect:
            if block_id in current:
                continue
            block = _require_childless_terminal(session, block_id, path.workflow_id)
            if block.path_id in below:
                raise InvalidOperation(f"Connecting block {block_id} would create a cycle")

        if to_disconnect:
            session.query(PathParentBlock).filter(
                PathParentBlock.path_id == path.id,
                PathParentBlock.block_id.in_(to_disconnect),
            ).delete(synchronize_session="fetch")
        for block_id in to_connect:
            if block_id not in current:
                session.add(PathParentBlock(path_id=path.id, block_id=block_id))
        session.flush()

        touched = set(to_connect) | (set(to_disconnect) & current)

        if not tree_store.parent_block_ids(session, path.id):
            result = tree_deletion.delete_subtree(session, [path.id])
            tree_deletion.reclassify_blocks_paths(session, touched | set(result.orphaned_parent_ids))
            logger.info("Merge path lost its last parent", extra={"path_id": path_id})
            return None

        tree_deletion.reclassify_blocks_paths(session, touched)
        tree_store.claim_revision(session, path.id)
        return path


def _descendant_path_ids(db: Session, path_id: int) -> set:
    order, _blocks = tree_deletion.collect_subtree(db, [path_id])
    return set(order)


def delete_path(
    path_id: int,
    *,
    db: Optional[Session] = None,
    blob_store: Optional[BlobStore] = None,
    expected_revision: Optional[int] = None,
) -> tree_deletion.SubtreeDeletion:
    with unit_of_work(db, blob_store=blob_store) as session:
        path = tree_store.get_path(session, path_id)

        root = tree_store.first_root_path(session, path.workflow_id)
        if root is not None and root.id == path.id:
            raise InvalidOperation("The workflow's first path cannot be deleted")

        for parent_id in tree_store.parent_block_ids(session, path.id):
            if len(tree_store.child_path_ids(session, parent_id)) == 2:
                raise InvalidOperation(
                    f"Block {parent_id} needs at least two paths; delete the block instead"
                )

        tree_store.claim_revision(session, path.id, expected_revision)

        result = tree_deletion.delete_subtree(session, [path.id])
        tree_deletion.reclassify_blocks_paths(session, result.orphaned_parent_ids)
        return result


def get_path_node(path_id: int, *, db: Optional[Session] = None) -> PathNode:
    with unit_of_work(db) as session:
        path = tree_store.get_path(session, path_id)
        return _build_node(session, path)


def list_workflow_paths(workflow_id: int, *, db: Optional[Session] = None) -> List[PathNode]:
    """Read-only view of a workflow's tree. Never repairs."""
    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)
        paths = (
            session.query(Path)
            .filter(Path.workflow_id == int(workflow_id))
            .order_by(Path.id.asc())
            .all()
        )
        return [_build_node(session, p) for p in paths]


def _build_node(db: Session, path: Path) -> PathNode:
    blocks = tree_store.path_blocks(db, path.id)
    children = tree_store.child_path_ids_by_block(db, [b.id for b in blocks])
    return PathNode(
        path=path,
        parent_block_ids=tree_store.parent_block_ids(db, path.id),
        blocks=[BlockNode(block=b, child_path_ids=children[b.id]) for b in blocks],
    )
