"""
models.py
======================

クイズエンジン全体で共有するデータモデル。

- Question: 出題される四択（2択以上）問題
- QuestionStats: 問題ごとの解答回数・正解回数
- QuizSettings: 1回のクイズの設定（モード・教科・制限時間・問題数）
- AnsweredQuestion: 1問ぶんの解答記録（作成後は変更しない）
- QuizResult: セッション終了時に算出する結果
- SubjectAnalysis / WeakPointAnalysis: 教科別の弱点分析
- SubjectScore / DiagnosisResult: AI 成績診断の入出力
- UserProfile / RankingEntry / LastQuizResult: 周辺機能用
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# ----------------------------------------------------------------------
#  定数
# ----------------------------------------------------------------------
SUBJECTS: Tuple[str, ...] = ("japanese", "social", "math", "science", "english")

SUBJECT_NAMES: Dict[str, str] = {
    "japanese": "国語",
    "social": "社会",
    "math": "数学",
    "science": "理科",
    "english": "英語",
}

QUIZ_MODES: Tuple[str, ...] = ("normal", "weak")

# 1問あたりの制限時間（秒）
TIME_LIMIT_OPTIONS: Tuple[int, ...] = (5, 10, 30, 60)

DEFAULT_QUESTION_COUNT = 10
DEFAULT_TIME_LIMIT = 30

# 時間切れ・未回答を表す選択肢 index
NO_ANSWER = -1


# ----------------------------------------------------------------------
#  Question
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Question:
    """
    問題 1 問。

    id は全体で一意。組み込み問題は "ma-001" 形式、
    管理画面で作成した問題は "custom-<subject>-<ms>-<rand>" 形式。
    """

    id: str
    subject: str
    question: str
    choices: Tuple[str, ...]
    correct_index: int
    difficulty: int = 1

    def __post_init__(self) -> None:
        # リストで渡されてもハッシュできるようにタプルへ揃える
        object.__setattr__(self, "choices", tuple(self.choices))
        if not self.id:
            raise ValueError("問題 ID が空です。")
        if self.subject not in SUBJECTS:
            raise ValueError(f"未知の教科です: {self.subject}")
        if len(self.choices) < 2:
            raise ValueError("選択肢は 2 つ以上必要です。")
        if not 0 <= self.correct_index < len(self.choices):
            raise ValueError(
                f"correct_index が範囲外です: {self.correct_index} (choices={len(self.choices)})"
            )
        if self.difficulty not in (1, 2, 3):
            raise ValueError(f"difficulty は 1〜3 です: {self.difficulty}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        """
        JSONL / Supabase の行 / ローカル保存データから Question を作る。

        correct_index は snake_case と camelCase (correctIndex) の両方を受け付ける。
        """
        correct = data.get("correct_index", data.get("correctIndex"))
        if correct is None:
            raise ValueError("correct_index がありません。")
        return cls(
            id=str(data.get("id", "")),
            subject=str(data.get("subject", "")),
            question=str(data.get("question", "")),
            choices=tuple(str(c) for c in (data.get("choices") or [])),
            correct_index=int(correct),
            difficulty=int(data.get("difficulty", 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "question": self.question,
            "choices": list(self.choices),
            "correct_index": self.correct_index,
            "difficulty": self.difficulty,
        }

    @property
    def subject_name(self) -> str:
        return SUBJECT_NAMES.get(self.subject, self.subject)


# ----------------------------------------------------------------------
#  統計
# ----------------------------------------------------------------------
@dataclass
class QuestionStats:
    attempts: int = 0
    correct: int = 0

    @property
    def accuracy(self) -> float:
        """正答率 (0.0〜1.0)。未挑戦なら 0.0。"""
        if self.attempts <= 0:
            return 0.0
        return self.correct / self.attempts

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionStats":
        return cls(
            attempts=int(data.get("attempts", 0)),
            correct=int(data.get("correct", 0)),
        )

    def to_dict(self) -> Dict[str, int]:
        return {"attempts": self.attempts, "correct": self.correct}


# ----------------------------------------------------------------------
#  クイズ設定
# ----------------------------------------------------------------------
@dataclass
class QuizSettings:
    mode: str = "normal"
    subjects: List[str] = field(default_factory=list)
    time_limit: int = DEFAULT_TIME_LIMIT
    question_count: int = DEFAULT_QUESTION_COUNT

    def validate(self) -> None:
        """
        画面側（境界）での入力チェック。問題があれば ValueError。

        コアの init_quiz は再検証しないので、呼び出し前に必ず通すこと。
        """
        if self.mode not in QUIZ_MODES:
            raise ValueError(f"未知のモードです: {self.mode}")
        if not self.subjects:
            raise ValueError("教科を 1 つ以上選んでください。")
        unknown = [s for s in self.subjects if s not in SUBJECTS]
        if unknown:
            raise ValueError(f"未知の教科です: {', '.join(unknown)}")
        if self.time_limit not in TIME_LIMIT_OPTIONS:
            raise ValueError(f"制限時間は {TIME_LIMIT_OPTIONS} のいずれかです: {self.time_limit}")
        if self.question_count <= 0:
            raise ValueError("問題数は 1 以上にしてください。")


# ----------------------------------------------------------------------
#  解答記録・結果
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class AnsweredQuestion:
    question: Question
    selected_index: int
    is_correct: bool
    time_spent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question.to_dict(),
            "selected_index": self.selected_index,
            "is_correct": self.is_correct,
            "time_spent": self.time_spent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnsweredQuestion":
        return cls(
            question=Question.from_dict(data["question"]),
            selected_index=int(data.get("selected_index", NO_ANSWER)),
            is_correct=bool(data.get("is_correct", False)),
            time_spent=float(data.get("time_spent", 0)),
        )


@dataclass
class QuizResult:
    total_questions: int
    correct_count: int
    score: int
    answered_questions: List[AnsweredQuestion] = field(default_factory=list)


# ----------------------------------------------------------------------
#  弱点分析
# ----------------------------------------------------------------------
@dataclass
class SubjectAnalysis:
    subject: str
    subject_name: str
    total_attempts: int
    total_correct: int
    accuracy: int  # 0-100
    question_count: int


@dataclass
class WeakPointAnalysis:
    subject_analysis: List[SubjectAnalysis]
    weak_subjects: List[str]  # 正答率 60% 未満
    strong_subjects: List[str]  # 正答率 80% 以上
    overall_accuracy: int
    total_questions_solved: int

    def get(self, subject: str) -> Optional[SubjectAnalysis]:
        for row in self.subject_analysis:
            if row.subject == subject:
                return row
        return None


# ----------------------------------------------------------------------
#  AI 成績診断
# ----------------------------------------------------------------------
@dataclass
class SubjectScore:
    subject: str
    subject_name: str
    correct: int
    total: int
    rate: int


@dataclass
class DiagnosisResult:
    comment: str
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    advice: str = ""
    source: str = "fallback"  # "ai" / "fallback"


# ----------------------------------------------------------------------
#  プロファイル・ランキング・履歴
# ----------------------------------------------------------------------
@dataclass
class UserProfile:
    nickname: str
    device_id: str
    invite_code: str
    created_at: int  # epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nickname": self.nickname,
            "device_id": self.device_id,
            "invite_code": self.invite_code,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            nickname=str(data.get("nickname", "")),
            device_id=str(data.get("device_id", "")),
            invite_code=str(data.get("invite_code", "")),
            created_at=int(data.get("created_at", 0)),
        )


@dataclass
class RankingEntry:
    rank: int
    nickname: str
    score: int
    device_id: str
    is_me: bool = False


@dataclass
class LastQuizResult:
    answered_questions: List[AnsweredQuestion]
    total_score: int
    timestamp: int  # epoch ms
