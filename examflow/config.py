"""Runtime settings. Read from the environment (and .env) like the rest of the stack."""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from examflow.client import ExamServiceClient

FLOW_DIRECT = "direct"
FLOW_GATED = "gated"
FLOWS = (FLOW_DIRECT, FLOW_GATED)

DEFAULT_PREFIX = "/sat"
DEFAULT_TIMEOUT = 15.0
DEFAULT_VOCABULARY = "sections"
START_GRACE_SECONDS = 8.0
BREAK_MINUTES = 10


@dataclass
class Settings:
    base_url: str
    prefix: str = DEFAULT_PREFIX
    timeout: float = DEFAULT_TIMEOUT
    flow: str = FLOW_DIRECT
    vocabulary: str = DEFAULT_VOCABULARY
    start_grace_seconds: float = START_GRACE_SECONDS
    break_minutes: int = BREAK_MINUTES

    def __post_init__(self):
        if self.flow not in FLOWS:
            raise ValueError(f"flow must be one of {FLOWS}, got {self.flow!r}")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        base_url = os.environ.get("EXAM_API_BASE_URL")
        if not base_url:
            raise ValueError("EXAM_API_BASE_URL must be set")
        return cls(
            base_url=base_url,
            prefix=os.environ.get("EXAM_API_PREFIX", DEFAULT_PREFIX),
            timeout=float(os.environ.get("EXAM_HTTP_TIMEOUT") or DEFAULT_TIMEOUT),
            flow=(os.environ.get("EXAM_FLOW") or FLOW_DIRECT).strip().lower(),
            vocabulary=(os.environ.get("EXAM_PROGRESS_VOCABULARY") or DEFAULT_VOCABULARY).strip().lower(),
            start_grace_seconds=float(os.environ.get("EXAM_START_GRACE_SECONDS") or START_GRACE_SECONDS),
            break_minutes=int(os.environ.get("EXAM_BREAK_MINUTES") or BREAK_MINUTES),
        )

    def client(self) -> ExamServiceClient:
        """Build the HTTP client for these settings."""
        return ExamServiceClient(self.base_url, prefix=self.prefix, timeout=self.timeout)
