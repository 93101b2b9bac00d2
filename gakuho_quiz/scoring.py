"""
scoring.py
======================

スコア計算と苦手判定。

- calculate_score: 正解 1 問ごとに 基本点 × 時間ボーナス × 難易度 を合計
- is_weak_question: 誤答率 50% 以上 かつ 解答 3 回以上 なら苦手
- validate_score: スコア送信前の妥当性チェック（ランキング汚染を防ぐ）

いずれも副作用のない純粋関数。
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .models import (
    SUBJECTS,
    TIME_LIMIT_OPTIONS,
    AnsweredQuestion,
    QuestionStats,
)

BASE_POINT = 100
MAX_TIME_BONUS = 2
MAX_DIFFICULTY = 3

WEAK_MIN_ATTEMPTS = 3
WEAK_ERROR_RATE = 0.5


# ----------------------------------------------------------------------
#  スコア
# ----------------------------------------------------------------------
def calculate_score(answered_questions: Iterable[AnsweredQuestion], time_limit: float) -> int:
    """
    セッション全体のスコアを返す。

    時間ボーナスは 1 + (1 - time_spent / time_limit) で、即答なら 2 倍、
    制限時間ぎりぎりなら 1 倍。比率は [0, 1] に丸める。
    丸めは 1 問ごとに行ってから合計する。
    """
    total = 0
    for answered in answered_questions:
        if not answered.is_correct:
            continue
        if time_limit > 0:
            time_ratio = 1 - answered.time_spent / time_limit
        else:
            time_ratio = 0.0
        time_ratio = min(max(time_ratio, 0.0), 1.0)
        time_bonus = 1 + time_ratio
        total += round(BASE_POINT * time_bonus * answered.question.difficulty)
    return total


def calculate_accuracy(answered_questions: List[AnsweredQuestion]) -> int:
    """正答率 (0-100)。"""
    if not answered_questions:
        return 0
    correct = sum(1 for a in answered_questions if a.is_correct)
    return round(correct / len(answered_questions) * 100)


def calculate_subject_accuracy(
    answered_questions: List[AnsweredQuestion],
) -> Dict[str, Dict[str, int]]:
    """教科ごとの {correct, total, rate}。出題の無い教科も 0 で含める。"""
    result: Dict[str, Dict[str, int]] = {}
    for subject in SUBJECTS:
        rows = [a for a in answered_questions if a.question.subject == subject]
        correct = sum(1 for a in rows if a.is_correct)
        total = len(rows)
        rate = round(correct / total * 100) if total > 0 else 0
        result[subject] = {"correct": correct, "total": total, "rate": rate}
    return result


def get_grade(accuracy: int) -> Tuple[str, str]:
    """結果画面の評価（グレードとひとこと）。"""
    if accuracy >= 90:
        return "S", "すばらしい!"
    if accuracy >= 80:
        return "A", "よくできました!"
    if accuracy >= 70:
        return "B", "いい調子!"
    if accuracy >= 60:
        return "C", "もう少し!"
    return "D", "がんばろう!"


# ----------------------------------------------------------------------
#  苦手判定
# ----------------------------------------------------------------------
def is_weak_question(stats: QuestionStats) -> bool:
    # 3 回未満は母数不足として判定しない
    if stats.attempts < WEAK_MIN_ATTEMPTS:
        return False
    error_rate = 1 - stats.correct / stats.attempts
    return error_rate >= WEAK_ERROR_RATE


def get_weak_question_ids(all_stats: Mapping[str, QuestionStats]) -> Set[str]:
    return {qid for qid, stats in all_stats.items() if is_weak_question(stats)}


# ----------------------------------------------------------------------
#  ハイスコア
# ----------------------------------------------------------------------
def generate_score_key(mode: str, subjects: Iterable[str], time_limit: int) -> str:
    """
    ハイスコア保存用のキー。

    例: generate_score_key("normal", ["math", "english"], 30)
        -> "normal_english-math_30"
    """
    subject_key = "-".join(sorted(subjects))
    return f"{mode}_{subject_key}_{time_limit}"


def validate_score(
    score: int,
    correct_count: int,
    total_questions: int,
    time_limit: int,
) -> bool:
    """
    ランキングへ送るスコアがあり得る値かを判定する。

    上限は 全問正解 × 最大時間ボーナス × 最高難易度 × 基本点。
    """
    if score < 0 or score > 100000:
        return False
    if correct_count < 0 or correct_count > total_questions:
        return False
    if total_questions < 1 or total_questions > 100:
        return False
    if time_limit not in TIME_LIMIT_OPTIONS:
        return False

    max_possible = total_questions * MAX_TIME_BONUS * MAX_DIFFICULTY * BASE_POINT
    if score > max_possible:
        return False

    # 正解 0 なのにスコアがあるのは不正
    if correct_count == 0 and score > 0:
        return False

    return True
