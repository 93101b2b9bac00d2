"""
session.py
======================

1 回のクイズ（セッション）の状態を管理するモジュール。

状態遷移:

    EMPTY ──init_quiz──▶ IN_PROGRESS ──next_question (最後の問題の後)──▶ FINISHED
      ▲                                                                 │
      └──────────────────────── reset / init_quiz ──────────────────────┘

- 出題リストは init_quiz 時に確定し、以後は変わらない
- answer は「時計を止める」合図。1 問につき 1 回だけ記録する
- 結果の算出（get_result）と統計への反映（save_results）は別操作
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import List, Optional

from .models import (
    DEFAULT_TIME_LIMIT,
    AnsweredQuestion,
    Question,
    QuizResult,
    QuizSettings,
)
from .question_bank import QuestionRepository
from .scoring import calculate_score
from .selector import QuestionSelector
from .user_data import UserDataStore

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    EMPTY = "empty"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"


class QuizSession:
    """
    クイズ 1 回ぶんの状態機械。

    repository / stats_store / selector はコンストラクタで受け取る
    （モジュールレベルのグローバルは使わない）。
    """

    def __init__(
        self,
        repository: QuestionRepository,
        stats_store: UserDataStore,
        selector: Optional[QuestionSelector] = None,
    ):
        self.repository = repository
        self.stats_store = stats_store
        self.selector = selector or QuestionSelector()

        self._lock = threading.RLock()
        self._questions: List[Question] = []
        self._index: int = 0
        self._answered: List[AnsweredQuestion] = []
        self._answered_index: Optional[int] = None
        self._settings: Optional[QuizSettings] = None

    # ------------------------------------------------------------------
    # 初期化
    # ------------------------------------------------------------------
    def init_quiz(self, settings: QuizSettings) -> None:
        """
        設定に従って出題リストを作り、セッションを最初からやり直す。

        候補が 0 件なら EMPTY のまま（current_question は None）。
        """
        with self._lock:
            self._settings = settings
            self._index = 0
            self._answered = []
            self._answered_index = None

            pool = self.repository.get_all_questions()
            stats = self.stats_store.get_question_stats() if settings.mode == "weak" else {}
            self._questions = self.selector.select(settings, pool, stats)

            if not self._questions:
                logger.warning(
                    "出題できる問題がありません: mode=%s subjects=%s",
                    settings.mode, settings.subjects,
                )
            else:
                logger.info(
                    "クイズ開始: mode=%s subjects=%s questions=%d",
                    settings.mode, settings.subjects, len(self._questions),
                )

    def reset(self) -> None:
        with self._lock:
            self._questions = []
            self._index = 0
            self._answered = []
            self._answered_index = None
            self._settings = None

    # ------------------------------------------------------------------
    # 状態参照
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Optional[QuizSettings]:
        return self._settings

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def answered_questions(self) -> List[AnsweredQuestion]:
        return list(self._answered)

    @property
    def current_question(self) -> Optional[Question]:
        with self._lock:
            if self._index >= len(self._questions):
                return None
            return self._questions[self._index]

    @property
    def is_finished(self) -> bool:
        with self._lock:
            return len(self._questions) > 0 and self._index >= len(self._questions)

    @property
    def state(self) -> SessionState:
        with self._lock:
            if not self._questions:
                return SessionState.EMPTY
            if self._index >= len(self._questions):
                return SessionState.FINISHED
            return SessionState.IN_PROGRESS

    @property
    def is_current_answered(self) -> bool:
        return self._answered_index is not None and self._answered_index == self._index

    @property
    def time_limit(self) -> int:
        if self._settings is None or not self._settings.time_limit:
            return DEFAULT_TIME_LIMIT
        return self._settings.time_limit

    # ------------------------------------------------------------------
    # 遷移
    # ------------------------------------------------------------------
    def answer(self, selected_index: int, time_spent: float) -> bool:
        """
        現在の問題への解答を記録し、正誤を返す。

        selected_index に NO_ANSWER (-1) を渡すと時間切れ扱い（不正解）。
        time_spent は [0, 制限時間] に丸める。
        現在の問題が無い / すでに解答済みなら何もせず False。
        """
        with self._lock:
            question = self.current_question
            if question is None:
                return False
            if self.is_current_answered:
                logger.debug("同じ問題への 2 回目の解答を無視しました: %s", question.id)
                return False

            spent = min(max(float(time_spent), 0.0), float(self.time_limit))
            is_correct = selected_index == question.correct_index
            self._answered.append(
                AnsweredQuestion(
                    question=question,
                    selected_index=selected_index,
                    is_correct=is_correct,
                    time_spent=spent,
                )
            )
            self._answered_index = self._index
            return is_correct

    def next_question(self) -> None:
        with self._lock:
            self._index += 1

    # ------------------------------------------------------------------
    # 結果
    # ------------------------------------------------------------------
    def get_result(self) -> QuizResult:
        """解答済みの記録からスコアを算出する。解答 0 件なら全て 0。"""
        with self._lock:
            answered = list(self._answered)
            correct_count = sum(1 for a in answered if a.is_correct)
            return QuizResult(
                total_questions=len(answered),
                correct_count=correct_count,
                score=calculate_score(answered, self.time_limit),
                answered_questions=answered,
            )

    def save_results(self) -> None:
        """解答記録を統計ストアへまとめて反映する。"""
        with self._lock:
            results = [
                {"question_id": a.question.id, "is_correct": a.is_correct}
                for a in self._answered
            ]
        if not results:
            return
        self.stats_store.update_multiple_question_stats(results)
