# === apipilot/models/project.py ===
from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from apipilot.db.database import Base

class Project(Base):
    __tablename__ = "projects"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    settings = Column(JSON, nullable=False, default=dict)  # {"ai_model": "sonnet", ...}
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def ai_model(self):
        return (self.settings or {}).get("ai_model")
