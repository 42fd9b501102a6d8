# === apipilot/models/api_configuration.py ===
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, func
from apipilot.db.database import Base

class APIConfiguration(Base):
    __tablename__ = "api_configurations"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    api_id = Column(Integer, ForeignKey("discovered_apis.id"), nullable=False, unique=True)
    credentials = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)
    auto_configured = Column(Boolean, default=False)
    verify_tls = Column(Boolean, default=True)
    test_status = Column(String, nullable=True)  # pending, success, failed
    last_tested = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
