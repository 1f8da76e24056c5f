"""Error taxonomy for the exam service and the submission encoder."""
from typing import Optional


class ExamServiceError(Exception):
    """Base class for every failure talking to the grading service."""

    def __init__(self, message: str, exam_id: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.exam_id = exam_id
        self.operation = operation

    def __str__(self):
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.exam_id:
            parts.append(f"exam_id={self.exam_id}")
        return " | ".join(parts)


class ExamNotFoundError(ExamServiceError):
    """The exam identifier does not exist. Never retried."""


class ServiceUnavailableError(ExamServiceError):
    """Network failure, timeout or an unexpected status code."""


class SessionExpiredError(ServiceUnavailableError):
    """401 from the service: the auth cookie is gone."""


class MalformedResponseError(ServiceUnavailableError):
    """Success status but the body is missing fields we need."""


class UnresolvedOptionError(ValueError):
    """A stored choice does not match any option of its question."""

    def __init__(self, question_id: str, option_id: str):
        super().__init__(f"Option {option_id!r} not found on question {question_id!r}")
        self.question_id = question_id
        self.option_id = option_id
