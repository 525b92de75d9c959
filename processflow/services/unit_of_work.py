from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from processflow.core.errors import TransactionFailure
from processflow.database import SessionLocal
from processflow.services.blob_store import BlobStore, discard_pending, release_pending


@contextmanager
def unit_of_work(db: Optional[Session] = None, *, blob_store: Optional[BlobStore] = None) -> Iterator[Session]:
    """
    If db is provided, this will NOT commit/close. Caller owns the transaction
    and must call release_pending(db) after its own commit, or
    discard_pending(db) after its own rollback.
    If db is None, a session is opened and committed here; queued blob
    releases run once the commit has succeeded, and blobs written during a
    rolled-back transaction are removed again.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        yield db

        if owns_db:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as exc:
        if owns_db:
            db.rollback()
            discard_pending(db, blob_store)
        raise TransactionFailure(str(exc)) from exc
    except Exception:
        if owns_db:
            db.rollback()
            discard_pending(db, blob_store)
        raise
    else:
        if owns_db:
            release_pending(db, blob_store)
    finally:
        if owns_db:
            db.close()
