"""
diagnosis.py
======================

AI 成績診断（講評コメント）を作るモジュール。

要件:
- クイズ結果を教科別に集計し、Gemini に講評を依頼する
- 応答は JSON（comment / strengths / weaknesses / advice）を期待し、崩れていても拾う
- API キーが無い・失敗・タイムアウトのときは正答率の帯に応じた定型講評を返す
- 結果画面を待たせないよう、問い合わせ全体に上限時間を設ける
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional, Protocol

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError, ResourceExhausted

from .models import SUBJECT_NAMES, AnsweredQuestion, DiagnosisResult, SubjectScore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "あなたは中学生向けの学習アプリ「ドキドキ!クイズチャレンジ」のAI講師です。\n"
    "親しみやすく、励ましながらも具体的なアドバイスができる先生として振る舞ってください。\n"
    "口調は「〜だね」「〜だよ」など、中学生に親しみやすいカジュアルな敬語を使ってください。\n"
    "マスコットキャラクター「がくまる」の友達という設定です。\n"
    "回答はJSON形式のみで、余計なテキストを付与しないでください。"
)

GENERATION_CONFIG = {"temperature": 0.7, "max_output_tokens": 500}

DEFAULT_STRENGTH = "チャレンジする姿勢が素晴らしい!"


# ----------------------------------------------------------------------
#  集計
# ----------------------------------------------------------------------
def aggregate_by_subject(answers: List[AnsweredQuestion]) -> List[SubjectScore]:
    """出題された教科だけを、出題順に集計する。"""
    totals: Dict[str, Dict[str, int]] = {}
    for a in answers:
        row = totals.setdefault(a.question.subject, {"correct": 0, "total": 0})
        row["total"] += 1
        if a.is_correct:
            row["correct"] += 1

    return [
        SubjectScore(
            subject=subject,
            subject_name=SUBJECT_NAMES.get(subject, subject),
            correct=row["correct"],
            total=row["total"],
            rate=round(row["correct"] / row["total"] * 100),
        )
        for subject, row in totals.items()
    ]


def _total_rate(answers: List[AnsweredQuestion]) -> int:
    if not answers:
        return 0
    return round(sum(1 for a in answers if a.is_correct) / len(answers) * 100)


def get_weak_subjects(answers: List[AnsweredQuestion]) -> List[str]:
    """正答率 60% 未満の教科を、低い順に。"""
    scores = [s for s in aggregate_by_subject(answers) if s.rate < 60]
    scores.sort(key=lambda s: s.rate)
    return [s.subject for s in scores]


# ----------------------------------------------------------------------
#  プロンプト / 応答
# ----------------------------------------------------------------------
def build_prompt(subject_scores: List[SubjectScore], total_rate: int, total_score: int) -> str:
    subject_summary = "\n".join(
        f"{s.subject_name}: {s.correct}/{s.total}問正解 ({s.rate}%)" for s in subject_scores
    )
    return f"""以下のクイズ結果について、中学生向けの講評をお願いします。

【成績】
総合正答率: {total_rate}%
スコア: {total_score}点

【教科別成績】
{subject_summary}

以下の形式でJSON形式で回答してください:
{{
  "comment": "全体的な講評（150〜200文字程度、励ましを含む）",
  "strengths": ["得意な点1", "得意な点2"],
  "weaknesses": ["苦手な点1", "苦手な点2"],
  "advice": "具体的な学習アドバイス（100文字程度）"
}}"""


_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def parse_ai_response(content: str, subject_scores: List[SubjectScore]) -> DiagnosisResult:
    """
    応答から最初の {...} を取り出して読む。
    読めなければ本文の先頭 300 文字をコメントにし、得意・苦手は集計から作る。
    """
    match = _JSON_BLOCK.search(content)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            logger.warning("AI 応答の JSON を解析できませんでした: %s", e)
        else:
            if isinstance(parsed, dict):
                return DiagnosisResult(
                    comment=str(parsed.get("comment") or ""),
                    strengths=[str(x) for x in parsed.get("strengths") or []],
                    weaknesses=[str(x) for x in parsed.get("weaknesses") or []],
                    advice=str(parsed.get("advice") or ""),
                    source="ai",
                )

    return DiagnosisResult(
        comment=content[:300],
        strengths=[f"{s.subject_name}が得意" for s in subject_scores if s.rate >= 70],
        weaknesses=[f"{s.subject_name}をもう少し" for s in subject_scores if s.rate < 50],
        advice="苦手な教科を中心に復習してみよう!",
        source="ai",
    )


# ----------------------------------------------------------------------
#  定型講評
# ----------------------------------------------------------------------
def get_fallback_diagnosis(answers: List[AnsweredQuestion], total_score: int) -> DiagnosisResult:
    subject_scores = aggregate_by_subject(answers)
    total_rate = _total_rate(answers)

    strengths = [f"{s.subject_name}が得意" for s in subject_scores if s.rate >= 70]
    weaknesses = [f"{s.subject_name}をもう少し頑張ろう" for s in subject_scores if s.rate < 50]

    if total_rate >= 80:
        comment = f"すごい! {total_rate}%の正答率だね! がくまるもびっくりの好成績だよ。この調子で続けていこう!"
        advice = "得意を伸ばしながら、さらに上を目指してみよう!"
    elif total_rate >= 60:
        comment = f"なかなかいい感じ! {total_rate}%正解できたね。もう少しで高得点だよ。がくまると一緒にがんばろう!"
        advice = "間違えた問題を復習すると、もっと伸びるよ!"
    elif total_rate >= 40:
        comment = f"{total_rate}%の正答率だったね。まだまだ伸びしろがあるよ! がくまると一緒にコツコツ頑張ろう!"
        advice = "基礎から見直してみると、ぐんと伸びるかも!"
    else:
        comment = f"今回は{total_rate}%だったけど、大丈夫! 誰でも最初はこんなものだよ。がくまると一緒に少しずつ頑張ろう!"
        advice = "まずは教科書の基本をしっかり確認してみよう!"

    return DiagnosisResult(
        comment=comment,
        strengths=strengths or [DEFAULT_STRENGTH],
        weaknesses=weaknesses,
        advice=advice,
        source="fallback",
    )


# ----------------------------------------------------------------------
#  Gemini モデル管理
# ----------------------------------------------------------------------
class TextGenerator(Protocol):
    def generate(self, prompt: str) -> Dict[str, Any]: ...


class ModelManager:
    """
    Gemini モデルの管理クラス。

    - list_models(): generateContent に対応したモデル一覧
    - select_best_model(): 優先モデル、なければ名前の新しい順の先頭
    - generate(): 選んだモデルから順にフェールオーバーして生成
    """

    def __init__(self, api_key: str, preferred_model: Optional[str] = None, request_timeout: float = 10.0):
        self.api_key = api_key
        self.preferred_model = preferred_model
        self.request_timeout = request_timeout
        genai.configure(api_key=api_key)
        self._cached_models: List[str] = []

    def list_models(self) -> List[str]:
        if self._cached_models:
            return list(self._cached_models)
        try:
            response = genai.list_models()
        except GoogleAPIError as e:
            logger.warning("Gemini モデル一覧を取得できませんでした: %s", e)
            return []

        models = [
            m.name
            for m in response
            if "generateContent" in getattr(m, "supported_generation_methods", [])
        ]
        self._cached_models = sorted(models, reverse=True)
        return list(self._cached_models)

    def select_best_model(self) -> Optional[str]:
        models = self.list_models()
        if not models:
            return None
        if self.preferred_model:
            for name in models:
                if name == self.preferred_model or name.endswith("/" + self.preferred_model):
                    return name
        return models[0]

    def _ordered_models(self) -> List[str]:
        models = self.list_models()
        best = self.select_best_model()
        if best is None:
            return []
        return [best] + [m for m in models if m != best]

    def generate(self, prompt: str) -> Dict[str, Any]:
        """
        成功時は {"model", "text", "offline": False}。
        すべて失敗したら {"offline": True}。
        """
        for model_name in self._ordered_models():
            try:
                model = genai.GenerativeModel(
                    model_name,
                    system_instruction=SYSTEM_PROMPT,
                    generation_config=GENERATION_CONFIG,
                )
                response = model.generate_content(
                    prompt, request_options={"timeout": self.request_timeout}
                )
                return {"model": model_name, "text": response.text, "offline": False}
            except ResourceExhausted as e:
                # クォータ上限（429）は他モデルでも同じなので打ち切る
                logger.warning("Gemini のクォータ上限に達しました (%s): %s", model_name, e)
                return {"model": model_name, "error": "429", "offline": True}
            except (GoogleAPIError, ValueError) as e:
                logger.warning("Gemini 呼び出しに失敗しました (%s): %s", model_name, e)
                time.sleep(0.3)
                continue
        return {"offline": True}


# ----------------------------------------------------------------------
#  DiagnosisService
# ----------------------------------------------------------------------
class DiagnosisService:
    """
    講評を返すサービス。generator が None なら常に定型講評。

    generator.generate() 全体を timeout 秒で打ち切る。
    前回の呼び出しがまだ終わっていなければ、新しく投げずに定型講評を返す。
    """

    def __init__(self, generator: Optional[TextGenerator] = None, timeout: float = 15.0):
        self.generator = generator
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gakuho-ai")
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None

    def get_diagnosis(self, answers: List[AnsweredQuestion], total_score: int) -> DiagnosisResult:
        if self.generator is None:
            logger.info("AI 診断は未設定のため、定型講評を使います")
            return get_fallback_diagnosis(answers, total_score)
        if not answers:
            return get_fallback_diagnosis(answers, total_score)

        subject_scores = aggregate_by_subject(answers)
        prompt = build_prompt(subject_scores, _total_rate(answers), total_score)

        with self._lock:
            if self._inflight is not None and not self._inflight.done():
                logger.warning("前回の AI 診断が終わっていないため、定型講評を使います")
                return get_fallback_diagnosis(answers, total_score)
            future = self._executor.submit(self.generator.generate, prompt)
            self._inflight = future

        try:
            result = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("AI 診断がタイムアウトしました (%.1f 秒)", self.timeout)
            return get_fallback_diagnosis(answers, total_score)
        except Exception:
            logger.exception("AI 診断に失敗しました")
            return get_fallback_diagnosis(answers, total_score)

        text = (result.get("text") or "").strip()
        if result.get("offline") or not text:
            return get_fallback_diagnosis(answers, total_score)
        return parse_ai_response(text, subject_scores)


def create_diagnosis_service(
    api_key: str,
    preferred_model: Optional[str] = None,
    timeout: float = 15.0,
) -> DiagnosisService:
    if not api_key:
        return DiagnosisService(None, timeout=timeout)
    return DiagnosisService(
        ModelManager(api_key, preferred_model=preferred_model, request_timeout=timeout),
        timeout=timeout,
    )
