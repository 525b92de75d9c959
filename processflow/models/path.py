from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from processflow.database import Base


class Path(Base):
    __tablename__ = "paths"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)
    name = Column(String, nullable=False)

    # bumped on every structural change; compared against expected_revision
    revision = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
