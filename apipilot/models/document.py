# === apipilot/models/document.py ===
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, func
from apipilot.core.exceptions import InvalidStatusTransition
from apipilot.db.database import Base


class DocumentStatus(str, enum.Enum):
    PROCESSING = "processing"
    ANALYZED = "analyzed"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def can_transition(cls, current: "DocumentStatus", target: "DocumentStatus") -> bool:
        return target in _FORWARD.get(current, ())


_FORWARD = {
    DocumentStatus.PROCESSING: (DocumentStatus.ANALYZED, DocumentStatus.ERROR),
    DocumentStatus.ANALYZED: (DocumentStatus.COMPLETED, DocumentStatus.ERROR),
}

# re-entry points for an explicit retry
_RETRYABLE = (DocumentStatus.ERROR, DocumentStatus.ANALYZED)


class Document(Base):
    __tablename__ = "api_documents"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    text_content = Column(Text, nullable=True)
    file_type = Column(String, nullable=True)  # mime type
    source_type = Column(String, nullable=False, default="file")  # file, url
    source_url = Column(String, nullable=True)
    file_uri = Column(String, nullable=True)
    file_name = Column(String, nullable=True)  # name in the external file store
    status = Column(String, nullable=False, default=DocumentStatus.PROCESSING.value)
    error_message = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def transition(self, target: DocumentStatus, error_message: str = None):
        current = DocumentStatus(self.status)
        if not DocumentStatus.can_transition(current, target):
            raise InvalidStatusTransition(current.value, target.value)
        self.status = target.value
        if target is DocumentStatus.ERROR:
            self.error_message = error_message

    def reopen(self):
        """Put a failed (or stalled) document back at the analysis step."""
        current = DocumentStatus(self.status)
        if current not in _RETRYABLE:
            raise InvalidStatusTransition(current.value, DocumentStatus.ANALYZED.value)
        self.status = DocumentStatus.ANALYZED.value
        self.error_message = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (DocumentStatus.COMPLETED.value, DocumentStatus.ERROR.value)
