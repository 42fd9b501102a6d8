# === apipilot/models/endpoint.py ===
from sqlalchemy import Column, Integer, String, Text, ForeignKey, JSON
from apipilot.db.database import Base

class Endpoint(Base):
    __tablename__ = "api_endpoints"

    id = Column(Integer, primary_key=True, index=True)
    api_id = Column(Integer, ForeignKey("discovered_apis.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    method = Column(String, nullable=False)
    path = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    parameters = Column(JSON, nullable=False, default=list)  # [{name, required, example, auto_value}]
    response_schema = Column(JSON, nullable=True)
    category = Column(String, nullable=True)  # auth, data_fetch, data_modify, other
    estimated_value = Column(String, nullable=True)
    execution_order = Column(Integer, nullable=True)
    execution_steps = Column(Text, nullable=True)
