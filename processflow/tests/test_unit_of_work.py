import pytest

from processflow.core.errors import TransactionFailure
from processflow.database import SessionLocal
from processflow.models.block import Block
from processflow.models.path import Path
from processflow.models.workflow import Workflow
from processflow.services import block_repository, tree_store
from processflow.services.blob_store import queue_release, queue_rollback_release, release_pending
from processflow.services.unit_of_work import unit_of_work


def _db():
    return SessionLocal()


def test_store_failure_rolls_back_and_raises_transaction_failure():
    with pytest.raises(TransactionFailure):
        with unit_of_work() as session:
            session.add(Workflow(name="kept?"))
            session.flush()
            session.add(Path(workflow_id=999999, name="dangling"))
            session.flush()

    db = _db()
    try:
        assert db.query(Workflow).count() == 0
    finally:
        db.close()


def test_failed_operation_never_releases_blobs(blob_store):
    with pytest.raises(RuntimeError):
        with unit_of_work() as session:
            queue_release(session, ["uploads/images/a.png"])
            raise RuntimeError("boom")

    assert blob_store.removed == []


def test_blobs_are_released_only_after_the_row_is_gone(workflow_factory):
    _workflow, root = workflow_factory()
    block = block_repository.insert_block(root.id, 1, {"image": "uploads/images/a.png"}).block
    seen = []

    class CheckingStore:
        def remove(self, keys):
            db = _db()
            try:
                seen.append(db.query(Block).filter(Block.id == block.id).first())
            finally:
                db.close()

        def copy(self, source, destination):
            raise AssertionError("unexpected copy")

    block_repository.delete_block(block.id, blob_store=CheckingStore())

    assert seen == [None]


def test_caller_owned_session_is_not_committed(workflow_factory, blob_store):
    _workflow, root = workflow_factory()
    block = block_repository.insert_block(root.id, 1, {"image": "uploads/images/a.png"}).block

    db = _db()
    try:
        block_repository.delete_block(block.id, db=db)
        assert blob_store.removed == []
        db.rollback()
    finally:
        db.close()

    db = _db()
    try:
        assert tree_store.get_block(db, block.id).image == "uploads/images/a.png"
    finally:
        db.close()


def test_caller_releases_blobs_after_its_own_commit(workflow_factory, blob_store):
    _workflow, root = workflow_factory()
    block = block_repository.insert_block(root.id, 1, {"image": "uploads/images/a.png"}).block

    db = _db()
    try:
        block_repository.delete_block(block.id, db=db)
        db.commit()
        assert release_pending(db) == ["uploads/images/a.png"]
    finally:
        db.close()

    assert blob_store.removed == ["uploads/images/a.png"]


def test_rollback_removes_blobs_written_during_the_transaction(blob_store):
    with pytest.raises(RuntimeError):
        with unit_of_work() as session:
            queue_rollback_release(session, ["uploads/images/copy.png"])
            raise RuntimeError("boom")

    assert blob_store.removed == ["uploads/images/copy.png"]


def test_commit_keeps_blobs_written_during_the_transaction(blob_store):
    with unit_of_work() as session:
        queue_rollback_release(session, ["uploads/images/copy.png"])

    assert blob_store.removed == []
