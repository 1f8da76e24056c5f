"""Shared builders and fakes for the examflow tests."""
import asyncio
import sys
import time
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from examflow.engine import SessionListener
from examflow.errors import ServiceUnavailableError
from examflow.models import LifecycleState, parse_session
from examflow.phases import MATH, READING_WRITING


def choice_question(qid, module=READING_WRITING, values=("alpha", "beta", "gamma", "delta")):
    return {
        "questionId": qid,
        "type": "CHOICE",
        "content": f"Question {qid}",
        "module": module,
        "options": [{"optionId": f"{qid}-opt{i}", "value": v} for i, v in enumerate(values)],
    }


def text_question(qid, module=MATH):
    return {"questionId": qid, "type": "TEXT", "content": f"Solve {qid}", "module": module}


def session_payload(progress, questions, exam_id="exam-1", envelope=True):
    data = {"examId": exam_id, "progress": progress, "questions": questions}
    if envelope:
        return {"result": "OK", "correlationId": "corr-1", "data": data}
    return data


def make_session(progress, questions, exam_id="exam-1"):
    return parse_session(session_payload(progress, questions, exam_id))


def rw_session(progress="Section_1", count=3, exam_id="exam-1"):
    return make_session(progress, [choice_question(f"rw{i}") for i in range(1, count + 1)], exam_id)


def math_session(progress="Section_3", exam_id="exam-1"):
    return make_session(progress, [choice_question("m1", module=MATH), text_question("m2")], exam_id)


class FakeExamService:
    """
    Stand-in for ExamServiceClient. Results are scripted per call; an
    exception instance in a script is raised instead of returned.
    """

    def __init__(self, fetch=None, create=None, submit=None, delay=0.0):
        self.fetch_script = list(fetch or [])
        self.create_script = list(create or [])
        self.submit_script = list(submit or [])
        self.delay = delay
        self.calls = []
        self.submitted = []

    def _next(self, script, what):
        if self.delay:
            time.sleep(self.delay)
        if not script:
            raise ServiceUnavailableError(f"no scripted {what} result")
        result = script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_exam(self, exam_id):
        self.calls.append(("fetch", exam_id))
        return self._next(self.fetch_script, "fetch")

    def create_exam(self):
        self.calls.append(("create",))
        return self._next(self.create_script, "create")

    def submit(self, exam_id, batch):
        self.calls.append(("submit", exam_id))
        self.submitted.append(batch)
        return self._next(self.submit_script, "submit")


class RecordingListener(SessionListener):
    def __init__(self):
        self.states = []
        self.ticks = []
        self.notes = []
        self.not_found = []
        self.completed = []

    def state_changed(self, state):
        self.states.append(state)

    def tick(self, remaining):
        self.ticks.append(remaining)

    def notify(self, level, message):
        self.notes.append((level, message))

    def exam_not_found(self, exam_id):
        self.not_found.append(exam_id)

    def exam_completed(self, exam_id):
        self.completed.append(exam_id)


async def wait_for_state(orchestrator, state: LifecycleState, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while orchestrator.state is not state:
        if time.monotonic() > deadline:
            raise AssertionError(f"state is {orchestrator.state}, expected {state}")
        await asyncio.sleep(0.005)


@pytest.fixture
def listener():
    return RecordingListener()
