"""
HTTP client for the exam grading service.

Blocking `requests` calls; the orchestrator runs them off the event loop.
Every failure is raised as an ExamServiceError subclass.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

import requests

from examflow.errors import (
    ExamNotFoundError,
    ExamServiceError,
    MalformedResponseError,
    ServiceUnavailableError,
    SessionExpiredError,
)
from examflow.models import OK_RESULTS, ExamSession, parse_session

logger = logging.getLogger(__name__)

NOT_FOUND_PHRASES = ("not found", "does not exist")


def extract_error_message(response: requests.Response) -> str:
    """Pull a human message out of an error body, whatever key the service used."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        first_error = errors[0].get("message") if isinstance(errors, list) and errors and isinstance(errors[0], dict) else None
        message = body.get("errorMessage") or body.get("message") or body.get("error") or first_error
        if message:
            return str(message)
    return f"Request failed with status {response.status_code}"


class ExamServiceClient:
    def __init__(self, base_url: str, prefix: str = "/sat", timeout: float = 15,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.prefix = "/" + prefix.strip("/") if prefix and prefix.strip("/") else ""
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    # ============= Endpoints =============

    def fetch_exam(self, exam_id: str) -> ExamSession:
        """GET an existing exam. A non-OK envelope means the exam doesn't exist."""
        body = self._request("GET", f"/exam/{exam_id}", exam_id=exam_id, operation="fetch_exam")
        try:
            return parse_session(body)
        except MalformedResponseError as e:
            if isinstance(body, dict) and "result" in body and (body["result"] not in OK_RESULTS or not body.get("data")):
                raise ExamNotFoundError(f"No exam data returned: {e.message}", exam_id, "fetch_exam") from e
            e.exam_id, e.operation = exam_id, "fetch_exam"
            raise

    def create_exam(self) -> ExamSession:
        """GET a freshly allocated exam."""
        body = self._request("GET", "/exam", operation="create_exam")
        return self._parse(body, None, "create_exam")

    def submit(self, exam_id: str, batch: List[Dict]) -> ExamSession:
        """POST a phase's answers (or [] to end the break) and get the next session."""
        body = self._request("POST", f"/exam/{exam_id}/submit", exam_id=exam_id,
                             operation="submit", json=batch)
        return self._parse(body, exam_id, "submit")

    # ============= Transport =============

    def url(self, path: str) -> str:
        return f"{self.base_url}{self.prefix}{path}"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-one-time-uuid": str(uuid4()),
            "x-event-time": datetime.now(timezone.utc).isoformat(),
        }

    def _request(self, method: str, path: str, exam_id: Optional[str] = None,
                 operation: Optional[str] = None, **kwargs):
        url = self.url(path)
        logger.info(f"📡 {method} {url}")
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Network error on {operation} ({url}): {e}")
            raise ServiceUnavailableError(f"Network error: {e}", exam_id, operation) from e

        if response.status_code >= 400:
            message = extract_error_message(response)
            logger.error(f"API error on {operation}: status={response.status_code} message={message} url={url}")
            raise self._error_for(response.status_code, message, exam_id, operation)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Response is not JSON: {e}", exam_id, operation) from e

    @staticmethod
    def _error_for(status: int, message: str, exam_id: Optional[str], operation: Optional[str]) -> ExamServiceError:
        if status == 401:
            return SessionExpiredError("Session expired. Please login again.", exam_id, operation)
        lowered = message.lower()
        if status == 404 or any(phrase in lowered for phrase in NOT_FOUND_PHRASES):
            return ExamNotFoundError(message, exam_id, operation)
        return ServiceUnavailableError(message, exam_id, operation)

    @staticmethod
    def _parse(body, exam_id: Optional[str], operation: str) -> ExamSession:
        try:
            return parse_session(body)
        except MalformedResponseError as e:
            e.exam_id, e.operation = exam_id, operation
            raise
