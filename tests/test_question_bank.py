from __future__ import annotations

import json
import re
import time

import pytest
from conftest import FakeRemote, make_question

from gakuho_quiz.models import Question
from gakuho_quiz.question_bank import (
    QuestionRepository,
    generate_question_id,
    load_question_bank,
    merge_questions,
    validate_question_input,
)


# ----------------------------------------------------------------------
#  JSONL
# ----------------------------------------------------------------------
def test_builtin_bank_has_every_subject(builtin_questions):
    subjects = {q.subject for q in builtin_questions}
    assert subjects == {"japanese", "social", "math", "science", "english"}
    assert len({q.id for q in builtin_questions}) == len(builtin_questions)


def test_broken_lines_are_skipped(tmp_path):
    path = tmp_path / "bank.jsonl"
    good = make_question("ma-ok").to_dict()
    camel = {**make_question("ma-camel").to_dict()}
    camel["correctIndex"] = camel.pop("correct_index")
    lines = [
        json.dumps(good, ensure_ascii=False),
        "",
        "{not json",
        json.dumps({"id": "bad", "subject": "math", "question": "?", "choices": ["a"], "correct_index": 0}),
        json.dumps(camel, ensure_ascii=False),
    ]
    path.write_text("\n".join(lines), encoding="utf-8")

    questions = load_question_bank(path)
    assert [q.id for q in questions] == ["ma-ok", "ma-camel"]


def test_missing_bank_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_question_bank(tmp_path / "nope.jsonl")


def test_merge_keeps_first_occurrence():
    first = make_question("ma-1", correct_index=0)
    second = make_question("ma-1", correct_index=3)
    merged = merge_questions([first], [second, make_question("ma-2")])
    assert [q.id for q in merged] == ["ma-1", "ma-2"]
    assert merged[0].correct_index == 0


# ----------------------------------------------------------------------
#  入力チェック・ID
# ----------------------------------------------------------------------
def test_generated_ids_use_custom_prefix():
    a = generate_question_id("math")
    assert re.fullmatch(r"custom-math-\d+-[a-z0-9]{4}", a)
    assert not a.startswith("ma-")


def test_validate_question_input_messages():
    assert validate_question_input("", ["a", "b"], 0) == "問題文を入力してください"
    assert validate_question_input("Q", ["a", " ", ""], 0) == "選択肢を2つ以上入力してください"
    assert validate_question_input("Q", ["a", "b", ""], 2) == "正解の選択肢が空です"
    assert validate_question_input("Q", ["a", "b", "", ""], 1) is None


# ----------------------------------------------------------------------
#  カスタム問題
# ----------------------------------------------------------------------
def test_custom_question_crud(repository):
    q = make_question("custom-math-1-abcd")
    repository.add_question(q)
    assert repository.is_custom_question(q.id)
    assert [c.id for c in repository.get_custom_questions()] == [q.id]
    assert repository.get_question_by_id(q.id) == q

    edited = Question(
        id=q.id, subject="math", question="改訂", choices=["x", "y"], correct_index=1, difficulty=2
    )
    assert repository.update_question(edited) is True
    assert repository.get_question_by_id(q.id).question == "改訂"

    assert repository.delete_question(q.id) is True
    assert repository.get_custom_questions() == []
    assert repository.delete_question(q.id) is False


def test_builtin_questions_cannot_be_added_or_edited(repository):
    builtin = repository.get_builtin_questions()[0]
    assert not repository.is_custom_question(builtin.id)
    with pytest.raises(ValueError):
        repository.add_question(builtin)
    assert repository.update_question(builtin) is False


def test_custom_questions_survive_a_new_repository(store, builtin_questions):
    QuestionRepository(store, builtin=builtin_questions).add_question(make_question("custom-math-9-zzzz"))
    fresh = QuestionRepository(store, builtin=builtin_questions)
    assert fresh.get_question_by_id("custom-math-9-zzzz") is not None


def test_questions_by_subject(repository):
    math = repository.get_questions_by_subject("math")
    assert len(math) == 5
    assert all(q.subject == "math" for q in math)


# ----------------------------------------------------------------------
#  リモート
# ----------------------------------------------------------------------
def test_remote_questions_are_merged_after_local(store, builtin_questions):
    clash = make_question("ma-001", correct_index=3)
    extra = make_question("ma-remote")
    repo = QuestionRepository(store, builtin=builtin_questions, remote=FakeRemote([clash, extra]))

    all_questions = repo.get_all_questions()
    ids = [q.id for q in all_questions]
    assert ids[-1] == "ma-remote"
    assert ids.count("ma-001") == 1
    assert repo.get_question_by_id("ma-001").correct_index == 1


def test_remote_failure_falls_back_to_local(store, builtin_questions):
    repo = QuestionRepository(
        store, builtin=builtin_questions, remote=FakeRemote(error=RuntimeError("offline"))
    )
    assert len(repo.get_all_questions()) == len(builtin_questions)


def test_slow_remote_times_out(store, builtin_questions):
    repo = QuestionRepository(
        store,
        builtin=builtin_questions,
        remote=FakeRemote([make_question("ma-late")], delay=0.5),
        remote_timeout=0.05,
    )
    assert repo.fetch_remote_questions() == []
    assert repo.get_question_by_id("ma-late") is None


def test_repeated_reads_are_stable(repository):
    first = [q.id for q in repository.get_all_questions()]
    second = [q.id for q in repository.get_all_questions()]
    assert first == second


def test_stuck_fetch_is_not_queued_again(store, builtin_questions):
    remote = FakeRemote([make_question("ma-late")], delay=0.3)
    repo = QuestionRepository(store, builtin=builtin_questions, remote=remote, remote_timeout=0.02)

    for _ in range(20):
        assert len(repo.get_all_questions()) == len(builtin_questions)
    assert remote.fetch_calls == 1


def test_remote_is_merged_again_after_recovery(store, builtin_questions):
    remote = FakeRemote([make_question("ma-late")], delay=0.2)
    repo = QuestionRepository(store, builtin=builtin_questions, remote=remote, remote_timeout=0.02)
    assert repo.fetch_remote_questions() == []

    time.sleep(0.4)
    remote.delay = 0.0
    repo.remote_timeout = 2.0
    assert [q.id for q in repo.get_all_questions()][-1] == "ma-late"
    assert remote.fetch_calls == 2


def test_lookups_use_last_fetched_pool(store, builtin_questions):
    remote = FakeRemote([make_question("ma-remote")])
    repo = QuestionRepository(store, builtin=builtin_questions, remote=remote)
    snapshot = repo.get_all_questions()

    assert repo.get_question_by_id("ma-remote") is not None
    assert len(repo.get_questions_by_subject("math", snapshot)) == 6
    assert remote.fetch_calls == 1
