"""
question_bank.py
===========================

出題候補となる問題の集合（Question Repository）を管理するモジュール。

問題の出どころは 3 つ:
- 組み込み問題: bank/question_bank.jsonl（読み取り専用）
- カスタム問題: 管理画面で作成し、ローカルストアに保存したもの
- リモート問題: Supabase の questions テーブル（取れればマージ）

get_all_questions() は 組み込み → カスタム → リモート の順に並べ、
同じ id は最初に現れたものを残す（ローカルがリモートより優先）。
リモート取得は短いタイムアウト付きで、失敗してもローカルだけで続行する。
"""

from __future__ import annotations

import json
import logging
import random
import string
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from .models import Question
from .storage import STORAGE_KEYS, JsonFileStore

if TYPE_CHECKING:
    from .remote import RemoteBackend

logger = logging.getLogger(__name__)

CUSTOM_KEY = STORAGE_KEYS["CUSTOM_QUESTIONS"]


# ----------------------------------------------------------------------
#  JSONL 読み込み
# ----------------------------------------------------------------------
def load_question_bank(path: str | Path) -> List[Question]:
    """
    question_bank.jsonl を読み込み、Question のリストを返す。

    - 空行は無視
    - 壊れた行・不正な問題はスキップしてログに残す
    - ファイルが無い場合は FileNotFoundError
    """
    bank_path = Path(path)
    if not bank_path.exists():
        raise FileNotFoundError(f"問題バンクが見つかりません: {bank_path}")

    questions: List[Question] = []
    with bank_path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                questions.append(Question.from_dict(json.loads(line)))
            except (json.JSONDecodeError, ValueError, TypeError) as e:
                logger.warning("問題バンク %s:%d をスキップしました: %s", bank_path, lineno, e)
    return questions


def merge_questions(*sources: Iterable[Question]) -> List[Question]:
    """複数の問題列を順につなぎ、id が重複したら先に現れたものを残す。"""
    seen: Dict[str, Question] = {}
    for source in sources:
        for q in source:
            if q.id not in seen:
                seen[q.id] = q
    return list(seen.values())


# ----------------------------------------------------------------------
#  ID 生成・入力チェック
# ----------------------------------------------------------------------
def generate_question_id(subject: str) -> str:
    """
    カスタム問題用の ID。組み込み問題 (xx-NNN) と衝突しない形式。

    形式:
        custom-<subject>-<epoch ms>-<base36 4 文字>
    """
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"custom-{subject}-{timestamp}-{suffix}"


def validate_question_input(
    question_text: str,
    choices: Sequence[str],
    correct_index: int,
) -> Optional[str]:
    """
    管理画面の入力チェック。問題があればエラーメッセージ、無ければ None。
    """
    if not question_text.strip():
        return "問題文を入力してください"
    filled = [c for c in choices if c.strip()]
    if len(filled) < 2:
        return "選択肢を2つ以上入力してください"
    if not 0 <= correct_index < len(choices) or not choices[correct_index].strip():
        return "正解の選択肢が空です"
    return None


# ----------------------------------------------------------------------
#  QuestionRepository
# ----------------------------------------------------------------------
class QuestionRepository:
    """
    組み込み・カスタム・リモートの問題をまとめて提供するクラス。

    store:
        カスタム問題を保存するローカルストア。
    builtin:
        組み込み問題。省略時は空（通常は load_question_bank の結果を渡す）。
    remote:
        RemoteBackend。None ならリモート取得はしない。
    """

    def __init__(
        self,
        store: JsonFileStore,
        builtin: Optional[Sequence[Question]] = None,
        remote: Optional["RemoteBackend"] = None,
        remote_timeout: float = 3.0,
    ):
        self.store = store
        self._builtin: List[Question] = list(builtin or [])
        self._builtin_ids = {q.id for q in self._builtin}
        self.remote = remote
        self.remote_timeout = remote_timeout
        self._executor: Optional[ThreadPoolExecutor] = None
        self._fetch_lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._last_remote: List[Question] = []

    # ------------------------------------------------------------
    # 組み込み / カスタム
    # ------------------------------------------------------------
    def get_builtin_questions(self) -> List[Question]:
        return list(self._builtin)

    def is_custom_question(self, question_id: str) -> bool:
        """組み込み問題に無い id ならカスタム。フラグは持たない。"""
        return question_id not in self._builtin_ids

    def get_custom_questions(self) -> List[Question]:
        raw = self.store.get_item(CUSTOM_KEY) or []
        questions: List[Question] = []
        for item in raw:
            try:
                questions.append(Question.from_dict(item))
            except (ValueError, TypeError) as e:
                logger.warning("カスタム問題をスキップしました: %s", e)
        return questions

    def save_custom_questions(self, questions: Iterable[Question]) -> None:
        self.store.set_item(CUSTOM_KEY, [q.to_dict() for q in questions])

    def add_question(self, question: Question) -> None:
        if not self.is_custom_question(question.id):
            raise ValueError(f"組み込み問題と同じ ID は使えません: {question.id}")
        customs = self.get_custom_questions()
        customs.append(question)
        self.save_custom_questions(customs)

    def update_question(self, question: Question) -> bool:
        """カスタム問題を置き換える。該当 id が無ければ何もしないで False。"""
        customs = self.get_custom_questions()
        for i, q in enumerate(customs):
            if q.id == question.id:
                customs[i] = question
                self.save_custom_questions(customs)
                return True
        return False

    def delete_question(self, question_id: str) -> bool:
        customs = self.get_custom_questions()
        remaining = [q for q in customs if q.id != question_id]
        if len(remaining) == len(customs):
            return False
        self.save_custom_questions(remaining)
        return True

    # ------------------------------------------------------------
    # リモート
    # ------------------------------------------------------------
    def fetch_remote_questions(self) -> List[Question]:
        """
        リモート問題を remote_timeout 秒以内で取得する。
        タイムアウト・エラー時は空リスト（ローカルにフォールバック）。

        取得は同時に 1 本だけ。前回の取得がまだ走っている間は
        新しく投げずにローカルへフォールバックする。
        """
        if self.remote is None:
            return []

        with self._fetch_lock:
            if self._inflight is not None and not self._inflight.done():
                logger.info("前回のリモート取得が終わっていないため待たずに進みます")
                return []
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gakuho-fetch")
            future = self._executor.submit(self.remote.fetch_questions)
            self._inflight = future

        try:
            questions = list(future.result(timeout=self.remote_timeout))
        except FutureTimeoutError:
            future.cancel()
            logger.warning("リモート問題の取得がタイムアウトしました (%.1f 秒)", self.remote_timeout)
            return []
        except Exception as e:
            logger.warning("リモート問題を取得できませんでした: %s", e)
            return []
        self._last_remote = questions
        return questions

    # ------------------------------------------------------------
    # 全問題
    # ------------------------------------------------------------
    def get_all_questions(self) -> List[Question]:
        """リモートを取り直して全問題のスナップショットを返す。"""
        remote_questions = self.fetch_remote_questions()
        if self.remote is not None and not remote_questions:
            logger.info("ローカルの問題のみを使用します")
        return merge_questions(self._builtin, self.get_custom_questions(), remote_questions)

    def get_known_questions(self) -> List[Question]:
        """リモートは取り直さず、最後に取得できたリモート問題を使う。"""
        return merge_questions(self._builtin, self.get_custom_questions(), self._last_remote)

    def get_question_by_id(
        self, question_id: str, questions: Optional[Sequence[Question]] = None
    ) -> Optional[Question]:
        pool = self.get_known_questions() if questions is None else questions
        for q in pool:
            if q.id == question_id:
                return q
        return None

    def get_questions_by_subject(
        self, subject: str, questions: Optional[Sequence[Question]] = None
    ) -> List[Question]:
        pool = self.get_known_questions() if questions is None else questions
        return [q for q in pool if q.subject == subject]
