from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from datetime import datetime

from ..core.db import Base

class KybLogEntry(Base):
    __tablename__ = "kyb_log_entries"

    # Autoincrement id is the append order; rows are never updated or deleted
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(32),
                    ForeignKey("kyb_jobs.id"),
                    index=True,
                    nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    step = Column(String, nullable=False)    # "Original Request", "CRN Search Result", …
    kind = Column(String(32), nullable=False)  # data | message | error | action_required | completed
    payload = Column(JSON, nullable=False)
