# === apipilot/models/discovered_api.py ===
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, func
from apipilot.db.database import Base

class DiscoveredAPI(Base):
    __tablename__ = "discovered_apis"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    document_id = Column(Integer, ForeignKey("api_documents.id"), nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    base_url = Column(String, nullable=False)
    auth_type = Column(String, nullable=False, default="none")
    auth_details = Column(JSON, nullable=True)  # header_name, format, guide
    execution_strategy = Column(Text, nullable=True)
    auto_executable = Column(Boolean, default=False)
    extracted_credentials = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
