"""
analysis.py
======================

問題統計からの弱点分析と、おすすめ問題の順位付け。

- analyze_by_subject: 教科ごとの正答率と、苦手教科・得意教科
- rank_recommended_questions: 苦手教科 > 未挑戦 > 正答率の低さ > 難易度 の順に推薦
- rank_weak_questions_for_subject: 1 教科の中で正答率の低い順

苦手「問題」の判定（誤答率 50% 以上）と苦手「教科」の判定（正答率 60% 未満）は
しきい値が異なる。
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import (
    SUBJECT_NAMES,
    SUBJECTS,
    Question,
    QuestionStats,
    SubjectAnalysis,
    WeakPointAnalysis,
)
from .question_bank import QuestionRepository
from .user_data import UserDataStore

SUBJECT_MIN_ATTEMPTS = 3
WEAK_SUBJECT_ACCURACY = 60
STRONG_SUBJECT_ACCURACY = 80


def _percent(correct: int, attempts: int) -> int:
    return round(correct / attempts * 100) if attempts > 0 else 0


# ----------------------------------------------------------------------
#  教科別分析
# ----------------------------------------------------------------------
def analyze_by_subject(
    stats: Mapping[str, QuestionStats],
    all_questions: Iterable[Question],
) -> WeakPointAnalysis:
    """
    統計を問題 id で教科に結び付けて集計する。

    問題一覧に存在しない id の統計はどの教科にも数えない。
    全体正答率は教科別正答率の平均ではなく、合計正解 / 合計解答。
    """
    subject_of: Dict[str, str] = {q.id: q.subject for q in all_questions}

    totals: Dict[str, Dict[str, int]] = {
        s: {"attempts": 0, "correct": 0, "question_count": 0} for s in SUBJECTS
    }
    for qid, stat in stats.items():
        subject = subject_of.get(qid)
        if subject is None or subject not in totals:
            continue
        totals[subject]["attempts"] += stat.attempts
        totals[subject]["correct"] += stat.correct
        if stat.attempts > 0:
            totals[subject]["question_count"] += 1

    rows = [
        SubjectAnalysis(
            subject=subject,
            subject_name=SUBJECT_NAMES[subject],
            total_attempts=t["attempts"],
            total_correct=t["correct"],
            accuracy=_percent(t["correct"], t["attempts"]),
            question_count=t["question_count"],
        )
        for subject, t in totals.items()
    ]

    weak: List[str] = []
    strong: List[str] = []
    for row in rows:
        # 3 回以上解いた教科のみ判定
        if row.total_attempts < SUBJECT_MIN_ATTEMPTS:
            continue
        if row.accuracy < WEAK_SUBJECT_ACCURACY:
            weak.append(row.subject)
        elif row.accuracy >= STRONG_SUBJECT_ACCURACY:
            strong.append(row.subject)

    total_attempts = sum(r.total_attempts for r in rows)
    total_correct = sum(r.total_correct for r in rows)

    return WeakPointAnalysis(
        subject_analysis=rows,
        weak_subjects=weak,
        strong_subjects=strong,
        overall_accuracy=_percent(total_correct, total_attempts),
        total_questions_solved=sum(r.question_count for r in rows),
    )


# ----------------------------------------------------------------------
#  おすすめ問題
# ----------------------------------------------------------------------
def recommendation_priority(
    question: Question,
    stat: QuestionStats | None,
    weak_subjects: Iterable[str],
) -> int:
    score = 0
    if question.subject in weak_subjects:
        score += 100
    if stat is None or stat.attempts == 0:
        score += 50
    else:
        score += round((1 - stat.correct / stat.attempts) * 30)
    # やや難しい問題を優先
    score += question.difficulty * 5
    return score


def rank_recommended_questions(
    questions: Sequence[Question],
    stats: Mapping[str, QuestionStats],
    weak_subjects: Iterable[str],
    limit: int = 10,
) -> List[Question]:
    """優先度の高い順に limit 問。同点は元の並び順を保つ（安定ソート）。"""
    weak = set(weak_subjects)
    scored = [(q, recommendation_priority(q, stats.get(q.id), weak)) for q in questions]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [q for q, _ in scored[:limit]]


def rank_weak_questions_for_subject(
    questions: Sequence[Question],
    stats: Mapping[str, QuestionStats],
    subject: str,
    limit: int = 5,
) -> List[Question]:
    scored = []
    for q in questions:
        if q.subject != subject:
            continue
        stat = stats.get(q.id)
        if stat is None or stat.attempts == 0:
            priority = 100  # 未挑戦
        else:
            priority = round((1 - stat.correct / stat.attempts) * 100)
        scored.append((q, priority))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [q for q, _ in scored[:limit]]


# ----------------------------------------------------------------------
#  サービス
# ----------------------------------------------------------------------
class LearningAnalyzer:
    """
    リポジトリと統計ストアから最新のスナップショットを取り、分析する。

    各メソッドは questions / stats を受け取れる。1 画面で何度も呼ぶときは
    snapshot() の結果を渡すと、リモート取得が 1 回で済む。
    """

    def __init__(self, repository: QuestionRepository, stats_store: UserDataStore):
        self.repository = repository
        self.stats_store = stats_store

    def snapshot(self) -> Tuple[List[Question], Dict[str, QuestionStats]]:
        return self.repository.get_all_questions(), self.stats_store.get_question_stats()

    def _resolve(
        self,
        questions: Optional[Sequence[Question]],
        stats: Optional[Mapping[str, QuestionStats]],
    ) -> Tuple[Sequence[Question], Mapping[str, QuestionStats]]:
        if questions is None:
            questions = self.repository.get_all_questions()
        if stats is None:
            stats = self.stats_store.get_question_stats()
        return questions, stats

    def analyze_by_subject(
        self,
        questions: Optional[Sequence[Question]] = None,
        stats: Optional[Mapping[str, QuestionStats]] = None,
    ) -> WeakPointAnalysis:
        questions, stats = self._resolve(questions, stats)
        return analyze_by_subject(stats, questions)

    def get_recommended_questions(
        self,
        limit: int = 10,
        questions: Optional[Sequence[Question]] = None,
        stats: Optional[Mapping[str, QuestionStats]] = None,
    ) -> List[Question]:
        questions, stats = self._resolve(questions, stats)
        analysis = analyze_by_subject(stats, questions)
        return rank_recommended_questions(questions, stats, analysis.weak_subjects, limit)

    def get_weak_questions_for_subject(
        self,
        subject: str,
        limit: int = 5,
        questions: Optional[Sequence[Question]] = None,
        stats: Optional[Mapping[str, QuestionStats]] = None,
    ) -> List[Question]:
        questions, stats = self._resolve(questions, stats)
        return rank_weak_questions_for_subject(questions, stats, subject, limit)
