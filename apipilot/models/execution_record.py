# === apipilot/models/execution_record.py ===
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, func
from apipilot.db.database import Base

class ExecutionRecord(Base):
    __tablename__ = "api_data"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    api_id = Column(Integer, ForeignKey("discovered_apis.id", ondelete="SET NULL"), nullable=True)
    endpoint_id = Column(Integer, ForeignKey("api_endpoints.id", ondelete="SET NULL"), nullable=True)
    status = Column(String, nullable=False)  # success, error
    status_code = Column(Integer, nullable=True)
    data = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    record_count = Column(Integer, default=0)
    execution_duration = Column(Integer, nullable=False)  # ms
    executed_at = Column(DateTime(timezone=True), server_default=func.now())
