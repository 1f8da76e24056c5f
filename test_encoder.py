import pytest

from conftest import choice_question, text_question
from examflow.encoder import ANSWER_VALUES_FIELD, QUESTION_ID_FIELD, encode_submission
from examflow.errors import UnresolvedOptionError
from examflow.models import QuestionType, parse_question


def _questions():
    return [
        parse_question(choice_question("q1")),
        parse_question(text_question("q2")),
        parse_question(choice_question("q3")),
    ]


def test_choice_answers_are_sent_as_literal_values():
    batch = encode_submission(_questions(), {"q1": "q1-opt2", "q3": "q3-opt0"})
    values = {entry[QUESTION_ID_FIELD]: entry[ANSWER_VALUES_FIELD] for entry in batch}
    assert values["q1"] == ["gamma"]
    assert values["q3"] == ["alpha"]
    assert "q1-opt2" not in str(batch)


def test_text_answers_are_sent_verbatim():
    batch = encode_submission(_questions(), {"q2": "  x = 3/4 "})
    assert batch[1] == {QUESTION_ID_FIELD: "q2", ANSWER_VALUES_FIELD: ["  x = 3/4 "]}


def test_unanswered_questions_are_blank_not_omitted():
    questions = _questions()
    batch = encode_submission(questions, {"q2": "12"})
    assert len(batch) == len(questions)
    assert [e[QUESTION_ID_FIELD] for e in batch] == ["q1", "q2", "q3"]
    assert batch[0][ANSWER_VALUES_FIELD] == [""]
    assert batch[2][ANSWER_VALUES_FIELD] == [""]


def test_answers_for_other_phases_are_left_out():
    batch = encode_submission(_questions()[:1], {"q1": "q1-opt1", "elsewhere": "abc"})
    assert batch == [{QUESTION_ID_FIELD: "q1", ANSWER_VALUES_FIELD: ["beta"]}]


def test_unknown_option_id_is_a_defect():
    with pytest.raises(UnresolvedOptionError) as info:
        encode_submission(_questions(), {"q1": "not-an-option"})
    assert info.value.question_id == "q1"


def test_legacy_payload_spellings_encode_the_same():
    radio = parse_question({
        "questionId": "old1",
        "questionType": "RADIO",
        "questionTitle": "Pick one",
        "questionModule": "Reading & Writing",
        "answers": [{"answerId": "a1", "value": "first", "correctAnswer": False},
                    {"answerId": "a2", "value": "second", "correctAnswer": True}],
    })
    options = parse_question({
        "questionId": "old2",
        "type": "RADIO",
        "questionContent": "Pick again",
        "moduleName": "Reading & Writing",
        "questionOptions": [{"questionOptionId": "o1", "value": "only"}],
    })
    assert radio.type is QuestionType.CHOICE
    assert radio.content == "Pick one"
    batch = encode_submission([radio, options], {"old1": "a2", "old2": "o1"})
    assert [e[ANSWER_VALUES_FIELD] for e in batch] == [["second"], ["only"]]
