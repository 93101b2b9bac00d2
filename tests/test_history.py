from __future__ import annotations

from conftest import make_answer, make_question

from gakuho_quiz import history
from gakuho_quiz.history import LAST_RESULT_KEY, HistoryManager
from gakuho_quiz.models import NO_ANSWER, AnsweredQuestion


def test_round_trip_within_an_hour(store):
    q = make_question("ma-001")
    answers = [
        make_answer(q, True, time_spent=3.5),
        AnsweredQuestion(question=q, selected_index=NO_ANSWER, is_correct=False, time_spent=30.0),
    ]
    manager = HistoryManager(store)
    manager.save_last_quiz_result(answers, 350)

    last = manager.get_last_quiz_result()
    assert last is not None
    assert last.total_score == 350
    assert last.answered_questions == answers


def test_expired_result_is_ignored(store, monkeypatch):
    manager = HistoryManager(store)
    manager.save_last_quiz_result([], 0)

    saved_at = store.get_item(LAST_RESULT_KEY)["timestamp"]
    monkeypatch.setattr(history, "_now_ms", lambda: saved_at + 60 * 60 * 1000 + 1)
    assert manager.get_last_quiz_result() is None


def test_clear_and_missing(store):
    manager = HistoryManager(store)
    assert manager.get_last_quiz_result() is None

    manager.save_last_quiz_result([], 0)
    manager.clear_last_quiz_result()
    assert manager.get_last_quiz_result() is None


def test_broken_record_is_ignored(store):
    store.set_item(LAST_RESULT_KEY, {"timestamp": history._now_ms(), "answered_questions": [{"oops": 1}]})
    assert HistoryManager(store).get_last_quiz_result() is None
