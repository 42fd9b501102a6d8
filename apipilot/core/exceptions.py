# === apipilot/core/exceptions.py ===
from typing import Optional

TRANSIENT_STATUS_CODES = {502, 503, 504, 529}


class InferenceError(Exception):
    """Raised by an inference backend or the dispatcher when a call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, no_response: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.no_response = no_response

    @property
    def transient(self) -> bool:
        if self.no_response:
            return True
        if self.status_code in TRANSIENT_STATUS_CODES:
            return True
        return "overloaded" in str(self).lower()


class NoStructuredOutput(InferenceError):
    """The model answered but the text holds no parseable JSON object."""

    def __init__(self, message: str = "No valid JSON found in AI response", raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text

    @property
    def transient(self) -> bool:
        return False


class AnalysisError(Exception):
    pass


class FileProcessingError(Exception):
    pass


class FileProcessingTimeout(FileProcessingError):
    pass


class UnsupportedContent(ValueError):
    pass


class InvalidStatusTransition(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Document cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target
