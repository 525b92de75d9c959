from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, ConfigDict


class WorkflowCreate(BaseModel):
    name: str


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime


class RepairResponse(BaseModel):
    workflow_id: int
    checked_path_ids: List[int]
    repaired_path_ids: List[int]


class ViolationsResponse(BaseModel):
    workflow_id: int
    violations: Dict[int, List[str]]
