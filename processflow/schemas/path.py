from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from processflow.schemas.block import BlockResponse


class PathCreate(BaseModel):
    workflow_id: int
    name: str


class ChildPathsCreate(BaseModel):
    names: List[str] = Field(min_length=1)
    expected_revision: Optional[int] = None


class PathsConnect(BaseModel):
    child_path_ids: List[int] = Field(min_length=1)
    destination_path_id: int
    expected_revision: Optional[int] = None


class MergePathCreate(BaseModel):
    workflow_id: int
    name: str
    parent_block_ids: List[int] = Field(min_length=1)


class MergePathUpdate(BaseModel):
    parents_to_connect: List[int] = []
    parents_to_disconnect: List[int] = []


class PathResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: int
    name: str
    revision: int
    created_at: datetime


class PathTreeResponse(PathResponse):
    parent_block_ids: List[int] = []
    blocks: List[BlockResponse] = []


class PathDeletionResponse(BaseModel):
    deleted_path_ids: List[int]
    deleted_block_ids: List[int]
