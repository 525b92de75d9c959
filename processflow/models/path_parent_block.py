from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer

from processflow.database import Base


class PathParentBlock(Base):
    """Branch edge: the block ``block_id`` spawned the path ``path_id``."""

    __tablename__ = "path_parent_blocks"

    path_id = Column(Integer, ForeignKey("paths.id"), primary_key=True, index=True)
    block_id = Column(Integer, ForeignKey("blocks.id"), primary_key=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
