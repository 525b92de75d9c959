from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from processflow.core.errors import InvalidOperation, NotFound, TransactionFailure


@contextmanager
def translate_errors() -> Iterator[None]:
    """Turn tree errors into user-facing HTTP rejections instead of a 500."""
    try:
        yield
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidOperation as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TransactionFailure as exc:
        raise HTTPException(status_code=503, detail="Storage transaction failed; retry the operation") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
