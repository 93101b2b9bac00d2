"""
remote.py
======================

Supabase（ホスト型バックエンド）との通信をまとめたモジュール。

テーブル:
- questions      : 問題（id / subject / question / choices / correct_index / difficulty）
- user_stats     : 端末ごとの問題統計（device_id + question_id で upsert）
- high_scores    : スコア履歴（Edge Function submit_score 経由で登録）
- user_profiles  : ニックネームなど

方針:
- ネットワークは常に「失敗してもよいもの」として扱う
- 失敗時はログを残して空の結果 / False を返し、呼び出し側はローカルを正とする
- 統計の同期は BackgroundSync に投げて待たない（fire-and-forget）
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from supabase import Client, create_client

from .config import AppConfig
from .models import Question, QuestionStats, RankingEntry, UserProfile
from .scoring import validate_score

logger = logging.getLogger(__name__)

SUBMIT_SCORE_FUNCTION = "submit_score"
DEFAULT_NICKNAME = "名無し"


# ----------------------------------------------------------------------
#  バックグラウンド実行
# ----------------------------------------------------------------------
class BackgroundSync:
    """
    投げっぱなしのリモート処理を実行するスレッドプール。

    結果はログにだけ残し、呼び出し側には返さない。
    テストや終了処理のために wait() で未完了分を待てる。
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="gakuho-sync"
        )
        self._pending: List[Future] = []

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "") -> Future:
        label = description or getattr(fn, "__name__", "task")
        future = self._executor.submit(fn, *args)
        future.add_done_callback(lambda f: self._on_done(f, label))
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(future)
        return future

    @staticmethod
    def _on_done(future: Future, label: str) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("バックグラウンド同期に失敗しました (%s): %s", label, exc)
        else:
            logger.debug("バックグラウンド同期完了: %s", label)

    def wait(self, timeout: Optional[float] = None) -> None:
        pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)
        self._pending = [f for f in self._pending if not f.done()]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


# ----------------------------------------------------------------------
#  RemoteBackend
# ----------------------------------------------------------------------
class RemoteBackend:
    """
    Supabase クライアントの薄いラッパー。

    device_id_provider は端末 ID を返す関数（profile.get_device_id を束縛したもの）。
    """

    def __init__(self, client: Client, device_id_provider: Callable[[], str]):
        self.client = client
        self._device_id = device_id_provider

    # ------------------------------------------------------------
    # 問題
    # ------------------------------------------------------------
    def fetch_questions(self) -> List[Question]:
        """
        questions テーブルの全件を Question に変換して返す。
        壊れた行はスキップする。テーブル取得自体の失敗は例外のまま上げる
        （タイムアウト制御は QuestionRepository 側で行う）。
        """
        response = self.client.table("questions").select("*").execute()
        questions: List[Question] = []
        for row in response.data or []:
            try:
                questions.append(Question.from_dict(row))
            except (ValueError, TypeError) as e:
                logger.warning("リモート問題をスキップしました (id=%s): %s", row.get("id"), e)
        return questions

    # ------------------------------------------------------------
    # 統計
    # ------------------------------------------------------------
    def sync_stats(self, question_id: str, stats: QuestionStats) -> None:
        self.client.table("user_stats").upsert(
            {
                "device_id": self._device_id(),
                "question_id": question_id,
                "attempts": stats.attempts,
                "correct": stats.correct,
                "updated_at": _now_iso(),
            },
            on_conflict="device_id,question_id",
        ).execute()

    def fetch_stats(self) -> Dict[str, QuestionStats]:
        try:
            response = (
                self.client.table("user_stats")
                .select("*")
                .eq("device_id", self._device_id())
                .execute()
            )
        except Exception:
            logger.exception("クラウドから統計を取得できませんでした")
            return {}

        stats: Dict[str, QuestionStats] = {}
        for row in response.data or []:
            stats[row["question_id"]] = QuestionStats(
                attempts=int(row.get("attempts", 0)),
                correct=int(row.get("correct", 0)),
            )
        return stats

    # ------------------------------------------------------------
    # スコア
    # ------------------------------------------------------------
    def submit_score(
        self,
        mode: str,
        score: int,
        correct_count: int = 0,
        total_questions: int = 10,
        time_limit: int = 30,
    ) -> bool:
        """
        Edge Function submit_score でスコアを登録する。
        あり得ないスコアは送らずに False。
        """
        if not validate_score(score, correct_count, total_questions, time_limit):
            logger.warning(
                "不正なスコアのため送信しません: mode=%s score=%s correct=%s total=%s",
                mode, score, correct_count, total_questions,
            )
            return False

        body = {
            "deviceId": self._device_id(),
            "mode": mode,
            "score": score,
            "correctCount": correct_count,
            "totalQuestions": total_questions,
            "timeLimit": time_limit,
        }
        try:
            raw = self.client.functions.invoke(
                SUBMIT_SCORE_FUNCTION, invoke_options={"body": body}
            )
        except Exception:
            logger.exception("ハイスコアを送信できませんでした")
            return False

        result = _decode_json(raw)
        return bool(result.get("success") is True)

    def fetch_ranking(self, period: str = "all", limit: int = 50) -> List[RankingEntry]:
        """
        ランキングを取得する。端末ごとに最高スコアだけを残して順位付けする。

        period: "weekly" / "monthly" / "all"
        """
        try:
            my_device_id = self._device_id()
            query = (
                self.client.table("high_scores")
                .select("device_id, score, created_at, user_profiles!inner(nickname)")
                .order("score", desc=True)
                .limit(limit)
            )
            since = _period_start(period)
            if since is not None:
                query = query.gte("created_at", since.isoformat())
            response = query.execute()
        except Exception:
            logger.exception("ランキングを取得できませんでした")
            return []

        best: Dict[str, Dict[str, Any]] = {}
        for row in response.data or []:
            device_id = row.get("device_id")
            score = int(row.get("score", 0))
            profile = row.get("user_profiles") or {}
            nickname = profile.get("nickname") or DEFAULT_NICKNAME
            if device_id not in best or best[device_id]["score"] < score:
                best[device_id] = {"score": score, "nickname": nickname}

        ordered = sorted(best.items(), key=lambda kv: kv[1]["score"], reverse=True)[:limit]
        return [
            RankingEntry(
                rank=i + 1,
                nickname=entry["nickname"],
                score=entry["score"],
                device_id=device_id,
                is_me=device_id == my_device_id,
            )
            for i, (device_id, entry) in enumerate(ordered)
        ]

    def get_my_rank(self) -> Optional[int]:
        my_device_id = self._device_id()
        for entry in self.fetch_ranking("all", 1000):
            if entry.device_id == my_device_id:
                return entry.rank
        return None

    def get_quiz_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """自分のスコア履歴（新しい順）。"""
        try:
            response = (
                self.client.table("high_scores")
                .select("score, mode, created_at")
                .eq("device_id", self._device_id())
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception:
            logger.exception("クイズ履歴を取得できませんでした")
            return []

        return [
            {
                "score": row.get("score"),
                "mode": row.get("mode"),
                "created_at": row.get("created_at"),
            }
            for row in response.data or []
        ]

    # ------------------------------------------------------------
    # プロファイル
    # ------------------------------------------------------------
    def sync_profile(self, profile: UserProfile) -> None:
        created = datetime.fromtimestamp(profile.created_at / 1000, tz=timezone.utc)
        self.client.table("user_profiles").upsert(
            {
                "device_id": profile.device_id,
                "nickname": profile.nickname,
                "invite_code": profile.invite_code,
                "created_at": created.isoformat(),
                "updated_at": _now_iso(),
            },
            on_conflict="device_id",
        ).execute()


# ----------------------------------------------------------------------
#  生成
# ----------------------------------------------------------------------
def create_remote_backend(
    config: AppConfig,
    device_id_provider: Callable[[], str],
) -> Optional[RemoteBackend]:
    """接続情報が揃っていれば RemoteBackend を返す。無ければ None（ローカルのみ）。"""
    if not config.has_remote:
        logger.info("Supabase の接続情報が無いため、ローカルのみで動作します")
        return None
    try:
        client = create_client(config.supabase_url, config.supabase_key)
    except Exception:
        logger.exception("Supabase クライアントを作成できませんでした")
        return None
    return RemoteBackend(client, device_id_provider)


# ----------------------------------------------------------------------
#  ユーティリティ
# ----------------------------------------------------------------------
def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _period_start(period: str) -> Optional[datetime]:
    now = datetime.now(timezone.utc)
    if period == "weekly":
        return now - timedelta(days=7)
    if period == "monthly":
        return now - timedelta(days=30)
    return None


def _decode_json(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}
    return {}
