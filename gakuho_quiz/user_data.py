"""
user_data.py
======================

端末ローカルのユーザーデータ（ハイスコア・問題統計）を扱うモジュール。

ローカルストアに保存する構造:

{
  "highScores": {
      "normal_math_30": 1200,
      ...
  },
  "questionStats": {
      "ma-001": {"attempts": 4, "correct": 1},
      ...
  }
}

ローカルが常に正。更新のたびに Supabase へも投げっぱなしで同期する
（失敗してもログのみ）。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional

from .models import QuestionStats
from .storage import STORAGE_KEYS, JsonFileStore

if TYPE_CHECKING:
    from .remote import BackgroundSync, RemoteBackend

logger = logging.getLogger(__name__)

USER_DATA_KEY = STORAGE_KEYS["USER_DATA"]


class UserDataStore:
    """
    ハイスコアと問題統計の読み書きを担当するクラス（Statistics Store）。

    主な責務:
    - questionStats の取得・一括更新
    - highScores の更新（自己ベスト時のみ）
    - リモートへの同期依頼
    """

    def __init__(
        self,
        store: JsonFileStore,
        remote: Optional["RemoteBackend"] = None,
        sync: Optional["BackgroundSync"] = None,
    ):
        self.store = store
        self.remote = remote
        self.sync = sync

    # ------------------------------------------------------------------
    # ロード / セーブ
    # ------------------------------------------------------------------
    def get_user_data(self) -> Dict[str, Any]:
        """保存済みデータを読む。無ければ空の骨格を返す。"""
        data = self.store.get_item(USER_DATA_KEY)
        if not isinstance(data, dict):
            data = {}
        self._ensure_structure(data)
        return data

    def save_user_data(self, data: Dict[str, Any]) -> None:
        self._ensure_structure(data)
        self.store.set_item(USER_DATA_KEY, data)

    @staticmethod
    def _ensure_structure(data: Dict[str, Any]) -> None:
        """足りないキーを安全に補完する。"""
        if not isinstance(data.get("highScores"), dict):
            data["highScores"] = {}
        if not isinstance(data.get("questionStats"), dict):
            data["questionStats"] = {}

    # ------------------------------------------------------------------
    # 問題統計
    # ------------------------------------------------------------------
    def get_question_stats(self) -> Dict[str, QuestionStats]:
        raw = self.get_user_data()["questionStats"]
        stats: Dict[str, QuestionStats] = {}
        for qid, value in raw.items():
            if isinstance(value, dict):
                stats[qid] = QuestionStats.from_dict(value)
        return stats

    def update_question_stats(self, question_id: str, is_correct: bool) -> None:
        self.update_multiple_question_stats([{"question_id": question_id, "is_correct": is_correct}])

    def update_multiple_question_stats(self, results: Iterable[Mapping[str, Any]]) -> None:
        """
        複数問題の統計をまとめて加算し、1 回だけ保存する。

        results の各要素は {"question_id": str, "is_correct": bool}。
        保存完了後にリモート同期を依頼する（待たない）。
        """
        data = self.get_user_data()
        raw = data["questionStats"]
        changed: Dict[str, QuestionStats] = {}

        for result in results:
            qid = result["question_id"]
            current = raw.get(qid)
            stats = QuestionStats.from_dict(current) if isinstance(current, dict) else QuestionStats()
            stats.attempts += 1
            if result.get("is_correct"):
                stats.correct += 1
            raw[qid] = stats.to_dict()
            changed[qid] = stats

        if not changed:
            return

        self.save_user_data(data)

        for qid, stats in changed.items():
            self._sync_in_background(qid, stats)

    def _sync_in_background(self, question_id: str, stats: QuestionStats) -> None:
        if self.remote is None or self.sync is None:
            return
        self.sync.submit(
            self.remote.sync_stats,
            question_id,
            QuestionStats(stats.attempts, stats.correct),
            description=f"sync_stats:{question_id}",
        )

    # ------------------------------------------------------------------
    # ハイスコア
    # ------------------------------------------------------------------
    def get_high_scores(self) -> Dict[str, int]:
        return {k: int(v) for k, v in self.get_user_data()["highScores"].items()}

    def update_high_score(
        self,
        key: str,
        score: int,
        correct_count: int = 0,
        total_questions: int = 10,
        time_limit: int = 30,
    ) -> bool:
        """
        自己ベストなら保存して True を返す。
        ランキングへの送信は投げっぱなし。
        """
        data = self.get_user_data()
        current = int(data["highScores"].get(key, 0))
        if score <= current:
            return False

        data["highScores"][key] = score
        self.save_user_data(data)

        if self.remote is not None and self.sync is not None:
            self.sync.submit(
                self.remote.submit_score,
                key,
                score,
                correct_count,
                total_questions,
                time_limit,
                description=f"submit_score:{key}",
            )
        return True

    # ------------------------------------------------------------------
    # リセット
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """全データ初期化。統計が減るのはこの操作だけ。"""
        logger.info("ユーザーデータをリセットしました")
        self.save_user_data({"highScores": {}, "questionStats": {}})
