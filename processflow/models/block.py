from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from processflow.database import Base


class BlockType(str, Enum):
    BEGIN = "BEGIN"
    STEP = "STEP"
    DELAY = "DELAY"
    PATH = "PATH"
    END = "END"
    LAST = "LAST"
    MERGE = "MERGE"


class DelayType(str, Enum):
    FIXED_DURATION = "FIXED_DURATION"
    WAIT_FOR_EVENT = "WAIT_FOR_EVENT"


TERMINAL_TYPES = frozenset(
    {BlockType.END.value, BlockType.LAST.value, BlockType.PATH.value, BlockType.MERGE.value}
)


class Block(Base):
    __tablename__ = "blocks"
    __table_args__ = (Index("ix_blocks_path_id_position", "path_id", "position"),)

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)
    path_id = Column(Integer, ForeignKey("paths.id"), nullable=False, index=True)

    type = Column(String, nullable=False)
    position = Column(Integer, nullable=False)

    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    icon = Column(String, nullable=True)
    image = Column(String, nullable=True)
    original_image = Column(String, nullable=True)

    # DELAY blocks only
    delay_seconds = Column(Integer, nullable=True)
    delay_type = Column(String, nullable=True)
    delay_event = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
