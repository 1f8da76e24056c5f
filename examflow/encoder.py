"""Answer map -> submission batch in the grading service's wire format."""
import logging
from typing import Dict, Iterable, List

from examflow.errors import UnresolvedOptionError
from examflow.models import Question

logger = logging.getLogger(__name__)

QUESTION_ID_FIELD = "questionId"
ANSWER_VALUES_FIELD = "answerValues"


def encode_answer(question: Question, answer) -> str:
    """
    Literal value to send for one question.

    Choice answers are stored as option ids and resolved to the option's
    value here; sending the id itself is never correct.
    """
    if answer is None or answer == "":
        return ""
    if not question.is_choice:
        return str(answer)
    value = question.option_value(str(answer))
    if value is None:
        raise UnresolvedOptionError(question.question_id, str(answer))
    return value


def encode_submission(questions: Iterable[Question], answers: Dict[str, str]) -> List[Dict]:
    """
    Build one entry per question of the phase, in phase order.

    Answers for questions outside `questions` are ignored; unanswered
    questions are sent as an empty string.
    """
    batch = []
    answered = 0
    for question in questions:
        value = encode_answer(question, answers.get(question.question_id))
        if value:
            answered += 1
        batch.append({QUESTION_ID_FIELD: question.question_id, ANSWER_VALUES_FIELD: [value]})
    logger.debug(f"Encoded {len(batch)} answers ({answered} answered, {len(batch) - answered} blank)")
    return batch
