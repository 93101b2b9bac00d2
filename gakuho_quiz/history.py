"""
history.py
=====================================

直近のクイズ結果の保存を担当するモジュール。

結果画面からマイページ・AI 診断へ戻ったときに、
最後に解いたクイズの内容を再表示するために使う。

ローカルストアに保存する構造:

"@gakuho_quiz_last_result": {
    "answered_questions": [AnsweredQuestion.to_dict(), ...],
    "total_score": 1200,
    "timestamp": 1700000000000
}

timestamp: 保存時刻（epoch ミリ秒）。1 時間を過ぎた結果は無効として扱う。
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from .models import AnsweredQuestion, LastQuizResult
from .storage import STORAGE_KEYS, JsonFileStore

logger = logging.getLogger(__name__)

LAST_RESULT_KEY = STORAGE_KEYS["LAST_QUIZ_RESULT"]

# 直近結果の有効期間（ミリ秒）
LAST_RESULT_TTL_MS = 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryManager:
    """
    直近のクイズ結果を読み書きするクラス。
    """

    def __init__(self, store: JsonFileStore):
        self.store = store

    # ---------------------------------------------------------
    # 保存
    # ---------------------------------------------------------
    def save_last_quiz_result(
        self,
        answered_questions: List[AnsweredQuestion],
        total_score: int,
    ) -> None:
        record = {
            "answered_questions": [a.to_dict() for a in answered_questions],
            "total_score": total_score,
            "timestamp": _now_ms(),
        }
        self.store.set_item(LAST_RESULT_KEY, record)

    # ---------------------------------------------------------
    # 取得
    # ---------------------------------------------------------
    def get_last_quiz_result(self) -> Optional[LastQuizResult]:
        """
        保存から 1 時間以内の結果だけを返す。
        無い・期限切れ・壊れている場合は None。
        """
        raw = self.store.get_item(LAST_RESULT_KEY)
        if not isinstance(raw, dict):
            return None

        timestamp = int(raw.get("timestamp", 0))
        if _now_ms() - timestamp > LAST_RESULT_TTL_MS:
            return None

        try:
            answered = [AnsweredQuestion.from_dict(a) for a in raw.get("answered_questions", [])]
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("直近のクイズ結果を読み込めませんでした: %s", e)
            return None

        return LastQuizResult(
            answered_questions=answered,
            total_score=int(raw.get("total_score", 0)),
            timestamp=timestamp,
        )

    # ---------------------------------------------------------
    # 削除
    # ---------------------------------------------------------
    def clear_last_quiz_result(self) -> None:
        self.store.remove_item(LAST_RESULT_KEY)
