import os
import subprocess
import tempfile
from pathlib import Path

import pytest
from sqlalchemy import text

_default_test_db = os.path.join(tempfile.mkdtemp(prefix="processflow-"), "processflow_test.db")
TEST_DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_default_test_db}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from processflow import database
from processflow import models  # noqa: F401
from processflow.core.errors import StorageCleanupFailure
from processflow.services import blob_store as blob_store_module


class FakeBlobStore:
    def __init__(self):
        self.removed = []
        self.copied = []
        self.fail_remove = False
        self.fail_copy = False

    def remove(self, keys):
        if self.fail_remove:
            raise StorageCleanupFailure("storage unavailable")
        self.removed.extend(keys)

    def copy(self, source, destination):
        if self.fail_copy:
            raise StorageCleanupFailure("storage unavailable")
        self.copied.append((source, destination))


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        ["alembic", "upgrade", "head"],
        check=True,
        cwd=Path(__file__).resolve().parents[2],
        env=env,
    )

    database.configure_database()


def _wipe_tables() -> None:
    with database.engine.begin() as conn:
        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(text(f'DELETE FROM "{table.name}"'))


@pytest.fixture(scope="function", autouse=True)
def _wipe_tables_between_tests():
    _wipe_tables()
    yield
    _wipe_tables()


@pytest.fixture(autouse=True)
def blob_store():
    store = FakeBlobStore()
    blob_store_module.set_blob_store(store)
    yield store
    blob_store_module.set_blob_store(None)


@pytest.fixture
def workflow_factory():
    from processflow.services import path_repository

    def _make(name: str = "Onboarding"):
        workflow = path_repository.create_workflow(name)
        root = path_repository.create_default_path(workflow.id)
        return workflow, root

    return _make
