"""
Exam session data model and payload parsing.

Sessions come from the grading service and are never edited locally: every
successful response replaces the whole ExamSession.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from examflow.errors import MalformedResponseError
from examflow.phases import InternalPhase

OK_RESULTS = ("OK", "success")


class LifecycleState(Enum):
    LOADING = "loading"
    START = "start"
    PENDING = "pending"
    BREAK = "break"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class QuestionType(Enum):
    CHOICE = "CHOICE"
    TEXT = "TEXT"


_TYPE_ALIASES = {
    "CHOICE": QuestionType.CHOICE,
    "RADIO": QuestionType.CHOICE,
    "TEXT": QuestionType.TEXT,
}


@dataclass(frozen=True)
class Option:
    option_id: str
    value: str


@dataclass(frozen=True)
class Question:
    question_id: str
    content: str
    type: QuestionType
    module: str
    options: Tuple[Option, ...] = ()
    image_url: Optional[str] = None
    domain: Optional[str] = None
    difficulty: Optional[str] = None

    @property
    def is_choice(self) -> bool:
        return self.type is QuestionType.CHOICE

    def option_value(self, option_id: str) -> Optional[str]:
        for option in self.options:
            if option.option_id == option_id:
                return option.value
        return None


@dataclass(frozen=True)
class ExamSession:
    exam_id: str
    progress: str
    questions: Tuple[Question, ...] = ()

    def questions_for_module(self, module: str) -> List[Question]:
        return [q for q in self.questions if q.module == module]

    def find_question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.question_id == question_id), None)


@dataclass(frozen=True)
class PhaseDescriptor:
    """What the UI renders for the active phase. Derived, never stored."""
    phase: InternalPhase
    module: str
    part: int
    questions: List[Question] = field(default_factory=list)
    minutes: int = 0

    @property
    def seconds(self) -> int:
        return self.minutes * 60

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def question_ids(self) -> List[str]:
        return [q.question_id for q in self.questions]


# ============= Parsing =============

def _first(raw: Dict, *keys):
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def parse_option(raw: Dict) -> Option:
    if not isinstance(raw, dict):
        raise MalformedResponseError(f"Option is not an object: {raw!r}")
    option_id = _first(raw, "optionId", "questionOptionId", "answerId")
    if option_id is None:
        raise MalformedResponseError(f"Option without an id: {raw!r}")
    return Option(option_id=str(option_id), value="" if raw.get("value") is None else str(raw["value"]))


def parse_question(raw: Dict) -> Question:
    """Accepts both the current and the older question payload spelling."""
    if not isinstance(raw, dict) or not raw.get("questionId"):
        raise MalformedResponseError(f"Question without questionId: {raw!r}")

    type_name = str(_first(raw, "type", "questionType") or "CHOICE").upper()
    qtype = _TYPE_ALIASES.get(type_name)
    if qtype is None:
        raise MalformedResponseError(f"Unknown question type {type_name!r} on {raw['questionId']}")

    options: Tuple[Option, ...] = ()
    if qtype is QuestionType.CHOICE:
        raw_options = _first(raw, "options", "questionOptions", "answers") or []
        if not isinstance(raw_options, list):
            raise MalformedResponseError(f"Options of {raw['questionId']} are not a list")
        options = tuple(parse_option(o) for o in raw_options)

    return Question(
        question_id=str(raw["questionId"]),
        content=_first(raw, "content", "questionContent", "questionTitle") or "",
        type=qtype,
        module=_first(raw, "module", "questionModule", "moduleName") or "",
        options=options,
        image_url=_first(raw, "imageUrl", "questionImage"),
        domain=raw.get("questionDomain"),
        difficulty=_first(raw, "difficultyLevel", "level"),
    )


def unwrap_envelope(body) -> Dict:
    """
    Strip the {result, correlationId, data} envelope if the service sent one.

    Raises MalformedResponseError when the envelope reports a failure or
    carries no data.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(body).__name__}")
    if "result" not in body and "data" not in body:
        return body
    if body.get("result") not in OK_RESULTS or not isinstance(body.get("data"), dict):
        raise MalformedResponseError(f"Service returned result={body.get('result')!r} without exam data")
    return body["data"]


def parse_session(body) -> ExamSession:
    data = unwrap_envelope(body)
    missing = [k for k in ("examId", "progress", "questions") if data.get(k) is None]
    if missing:
        raise MalformedResponseError(f"Exam payload missing {', '.join(missing)}")
    if not isinstance(data["questions"], list):
        raise MalformedResponseError("Exam payload 'questions' is not a list")
    return ExamSession(
        exam_id=str(data["examId"]),
        progress=str(data["progress"]),
        questions=tuple(parse_question(q) for q in data["questions"]),
    )
