from __future__ import annotations

import pytest

from gakuho_quiz.models import Question, QuestionStats, QuizSettings


def test_question_from_camel_case_row():
    q = Question.from_dict(
        {"id": "r-1", "subject": "science", "question": "?", "choices": ["a", "b", "c"], "correctIndex": 2}
    )
    assert q.correct_index == 2
    assert q.difficulty == 1
    assert q.subject_name == "理科"


@pytest.mark.parametrize(
    "changes",
    [
        {"id": ""},
        {"subject": "art"},
        {"choices": ["only one"]},
        {"correct_index": 4},
        {"difficulty": 4},
    ],
)
def test_invalid_questions_are_rejected(changes):
    values = {"id": "ma-1", "subject": "math", "question": "?", "choices": ["a", "b"], "correct_index": 0}
    values.update(changes)
    with pytest.raises(ValueError):
        Question(**values)


def test_stats_accuracy():
    assert QuestionStats().accuracy == 0.0
    assert QuestionStats(4, 1).accuracy == 0.25


def test_settings_validation():
    QuizSettings(mode="weak", subjects=["math"], time_limit=5, question_count=3).validate()

    with pytest.raises(ValueError):
        QuizSettings(mode="hard", subjects=["math"]).validate()
    with pytest.raises(ValueError):
        QuizSettings(mode="normal", subjects=[]).validate()
    with pytest.raises(ValueError):
        QuizSettings(mode="normal", subjects=["music"]).validate()
    with pytest.raises(ValueError):
        QuizSettings(mode="normal", subjects=["math"], time_limit=15).validate()
    with pytest.raises(ValueError):
        QuizSettings(mode="normal", subjects=["math"], question_count=0).validate()


def test_question_is_hashable_and_choices_are_frozen():
    listed = Question(id="ma-1", subject="math", question="?", choices=["a", "b"], correct_index=0)
    loaded = Question.from_dict(listed.to_dict())

    assert listed.choices == ("a", "b")
    assert hash(listed) == hash(loaded)
    assert {listed, loaded} == {listed}
    assert listed.to_dict()["choices"] == ["a", "b"]
