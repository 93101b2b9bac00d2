from __future__ import annotations

import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from gakuho_quiz.config import BANK_DIR
from gakuho_quiz.models import AnsweredQuestion, Question
from gakuho_quiz.question_bank import QuestionRepository, load_question_bank
from gakuho_quiz.storage import JsonFileStore
from gakuho_quiz.user_data import UserDataStore


def make_question(qid: str, subject: str = "math", difficulty: int = 1, correct_index: int = 0) -> Question:
    return Question(
        id=qid,
        subject=subject,
        question=f"{qid} の問題",
        choices=["A", "B", "C", "D"],
        correct_index=correct_index,
        difficulty=difficulty,
    )


def make_answer(question: Question, correct: bool, time_spent: float = 0.0) -> AnsweredQuestion:
    selected = question.correct_index if correct else (question.correct_index + 1) % len(question.choices)
    return AnsweredQuestion(
        question=question,
        selected_index=selected,
        is_correct=correct,
        time_spent=time_spent,
    )


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "local_store.json")


@pytest.fixture
def builtin_questions() -> List[Question]:
    return load_question_bank(BANK_DIR / "question_bank.jsonl")


@pytest.fixture
def repository(store, builtin_questions):
    return QuestionRepository(store, builtin=builtin_questions)


@pytest.fixture
def user_data(store):
    return UserDataStore(store)


# ----------------------------------------------------------------------
#  リモートのフェイク
# ----------------------------------------------------------------------
class FakeRemote:
    """RemoteBackend と同じ口を持つフェイク。呼び出しを記録する。"""

    def __init__(self, questions: Optional[List[Question]] = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.questions = questions or []
        self.delay = delay
        self.error = error
        self.synced: List[Any] = []
        self.submitted: List[Any] = []
        self.profiles: List[Any] = []
        self.fetch_calls = 0

    def fetch_questions(self) -> List[Question]:
        self.fetch_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.questions)

    def sync_stats(self, question_id, stats) -> None:
        self.synced.append((question_id, stats.attempts, stats.correct))

    def submit_score(self, mode, score, correct_count=0, total_questions=10, time_limit=30) -> bool:
        self.submitted.append((mode, score, correct_count, total_questions, time_limit))
        return True

    def sync_profile(self, profile) -> None:
        self.profiles.append(profile)


@pytest.fixture
def fake_remote():
    return FakeRemote()


# ----------------------------------------------------------------------
#  Supabase クライアントのフェイク
# ----------------------------------------------------------------------
class FakeQuery:
    def __init__(self, client: "FakeSupabaseClient", table: str):
        self.client = client
        self.table = table
        self.calls: List[tuple] = []

    def _record(self, name: str, *args: Any, **kwargs: Any) -> "FakeQuery":
        self.calls.append((name, args, kwargs))
        return self

    def select(self, *args: Any, **kwargs: Any) -> "FakeQuery":
        return self._record("select", *args, **kwargs)

    def eq(self, *args: Any) -> "FakeQuery":
        return self._record("eq", *args)

    def gte(self, *args: Any) -> "FakeQuery":
        return self._record("gte", *args)

    def order(self, *args: Any, **kwargs: Any) -> "FakeQuery":
        return self._record("order", *args, **kwargs)

    def limit(self, *args: Any) -> "FakeQuery":
        return self._record("limit", *args)

    def upsert(self, *args: Any, **kwargs: Any) -> "FakeQuery":
        return self._record("upsert", *args, **kwargs)

    def execute(self) -> SimpleNamespace:
        if self.client.error is not None:
            raise self.client.error
        return SimpleNamespace(data=self.client.rows.get(self.table, []))


class FakeFunctions:
    def __init__(self, response: Any):
        self.response = response
        self.invocations: List[tuple] = []

    def invoke(self, name: str, invoke_options: Dict[str, Any]) -> Any:
        self.invocations.append((name, invoke_options))
        return self.response


class FakeSupabaseClient:
    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None, function_response: Any = None):
        self.rows = rows or {}
        self.error: Optional[Exception] = None
        self.queries: List[FakeQuery] = []
        self.functions = FakeFunctions(function_response if function_response is not None else {"success": True})

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query
