from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class BlockCreate(BaseModel):
    path_id: int
    position: int = Field(ge=0)
    type: Literal["STEP", "DELAY"] = "STEP"
    title: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    image: Optional[str] = None
    original_image: Optional[str] = None
    delay_seconds: Optional[int] = None
    delay_type: Optional[str] = None
    delay_event: Optional[str] = None
    expected_revision: Optional[int] = None


class BlockUpdate(BaseModel):
    type: Optional[Literal["STEP", "DELAY"]] = None
    title: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    image: Optional[str] = None
    original_image: Optional[str] = None
    delay_seconds: Optional[int] = None
    delay_type: Optional[str] = None
    delay_event: Optional[str] = None
    expected_revision: Optional[int] = None


class BlockDuplicate(BaseModel):
    position: Optional[int] = Field(default=None, ge=0)
    path_id: Optional[int] = None
    expected_revision: Optional[int] = None


class BlockMove(BaseModel):
    block_ids: List[int] = Field(min_length=1)
    destination_path_id: int
    expected_revision: Optional[int] = None


class BlockReorder(BaseModel):
    path_id: int
    block_ids: List[int]
    expected_revision: Optional[int] = None


class PathEndUpdate(BaseModel):
    is_end: bool
    expected_revision: Optional[int] = None


class BlockResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: int
    path_id: int
    type: str
    position: int
    title: Optional[str]
    description: Optional[str]
    icon: Optional[str]
    image: Optional[str]
    original_image: Optional[str]
    delay_seconds: Optional[int]
    delay_type: Optional[str]
    delay_event: Optional[str]
    created_at: datetime
    updated_at: datetime
    child_path_ids: List[int] = []


class BlockDeletionResponse(BaseModel):
    block_id: int
    path_id: int
    deleted_path_ids: List[int]
