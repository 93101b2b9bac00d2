"""
selector.py
======================

出題する問題を選ぶモジュール（Question Selector）。

ポリシー:
- 選ばれた教科の問題だけを候補にする
- normal: 候補をシャッフルして先頭から question_count 問
- weak  : 苦手問題をシャッフルして優先、足りなければ残りを通常問題で補完
- 同じ id は 2 度出さない。候補が足りなければ少ないまま返す（水増ししない）
- 候補が 0 件なら空リスト（呼び出し側は「開始できない」と扱う）

乱数は random.Random を注入できる（テストではシード固定）。
"""

from __future__ import annotations

import random
from typing import List, Mapping, Optional, Sequence

from .models import DEFAULT_QUESTION_COUNT, Question, QuestionStats, QuizSettings
from .question_bank import merge_questions
from .scoring import get_weak_question_ids


class QuestionSelector:
    """設定と統計から出題リストを作るクラス。"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def _shuffled(self, items: Sequence[Question]) -> List[Question]:
        result = list(items)
        self.rng.shuffle(result)
        return result

    def select(
        self,
        settings: QuizSettings,
        pool: Sequence[Question],
        stats: Optional[Mapping[str, QuestionStats]] = None,
    ) -> List[Question]:
        """
        settings に従って pool から出題リストを作る。

        stats は weak モードのときだけ参照する。
        """
        count = settings.question_count or DEFAULT_QUESTION_COUNT
        subjects = set(settings.subjects)
        if not subjects or count <= 0:
            return []

        candidates = [q for q in merge_questions(pool) if q.subject in subjects]
        if not candidates:
            return []

        if settings.mode != "weak":
            return self._shuffled(candidates)[:count]

        weak_ids = get_weak_question_ids(stats or {})
        weak = [q for q in candidates if q.id in weak_ids]
        normal = [q for q in candidates if q.id not in weak_ids]

        shuffled_weak = self._shuffled(weak)
        if len(shuffled_weak) >= count:
            return shuffled_weak[:count]

        # 苦手問題が足りない分を通常問題で補う
        filler = self._shuffled(normal)[: count - len(shuffled_weak)]
        return shuffled_weak + filler
