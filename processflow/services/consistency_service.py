import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from processflow.models.path import Path
from processflow.services import tree_classifier, tree_store
from processflow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepairReport:
    workflow_id: int
    checked_path_ids: List[int] = field(default_factory=list)
    repaired_path_ids: List[int] = field(default_factory=list)


def _workflow_path_ids(db: Session, workflow_id: int) -> List[int]:
    rows = db.query(Path.id).filter(Path.workflow_id == int(workflow_id)).order_by(Path.id.asc()).all()
    return [row[0] for row in rows]


def repair_workflow(workflow_id: int, *, db: Optional[Session] = None) -> RepairReport:
    """
    Bring every path of a workflow back to canonical shape in one write
    transaction. Safe to re-run; a second pass reports nothing repaired.
    """
    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)

        checked = _workflow_path_ids(session, workflow_id)
        repaired = [path_id for path_id in checked if tree_classifier.repair(session, path_id)]

        if repaired:
            logger.warning(
                "Repaired inconsistent paths",
                extra={"workflow_id": int(workflow_id), "repaired_path_ids": repaired},
            )

        return RepairReport(workflow_id=int(workflow_id), checked_path_ids=checked, repaired_path_ids=repaired)


def workflow_violations(workflow_id: int, *, db: Optional[Session] = None) -> Dict[int, List[str]]:
    """Read-only: report invariant violations per path without touching them."""
    with unit_of_work(db) as session:
        tree_store.get_workflow(session, workflow_id)

        report = {}
        for path_id in _workflow_path_ids(session, workflow_id):
            problems = tree_classifier.path_violations(session, path_id)
            if problems:
                report[path_id] = problems
        return report
