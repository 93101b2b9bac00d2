"""
gakuho_quiz パッケージ
======================

このパッケージは、中学生向け 5 教科クイズアプリ「ドキドキ!クイズチャレンジ」の
内部ロジックを提供する。

主な役割:
- 設定管理（config）/ ログ設定（logging_config）
- 問題バンク・カスタム問題・リモート問題の管理（question_bank）
- 出題選択（selector）とクイズ進行（session）
- スコア計算・苦手判定（scoring）と弱点分析（analysis）
- ハイスコア・問題統計の保存（user_data / storage）
- Supabase 連携（remote）と Gemini による成績診断（diagnosis）
- 直近結果（history）とニックネーム（profile）
- おすすめ教材のカタログ（materials）
- UI コンポーネント（ui）

app.py は Streamlit UI のみを担当し、内部ロジックはすべて本パッケージから呼ぶ。
ui は streamlit を読み込むため、ここでは公開しない（app.py から直接 import する）。
"""

from .config import AppConfig
from .logging_config import configure_logging
from .models import (
    NO_ANSWER,
    SUBJECT_NAMES,
    SUBJECTS,
    AnsweredQuestion,
    DiagnosisResult,
    Question,
    QuestionStats,
    QuizResult,
    QuizSettings,
    WeakPointAnalysis,
)
from .storage import JsonFileStore
from .question_bank import QuestionRepository, load_question_bank
from .user_data import UserDataStore
from .selector import QuestionSelector
from .session import QuizSession, SessionState
from .analysis import LearningAnalyzer
from .diagnosis import DiagnosisService, ModelManager, create_diagnosis_service
from .history import HistoryManager
from .materials import Material, get_recommended_materials, load_materials
from .profile import ProfileManager, get_device_id
from .remote import BackgroundSync, RemoteBackend, create_remote_backend

__all__ = [
    "AppConfig",
    "configure_logging",
    "NO_ANSWER",
    "SUBJECT_NAMES",
    "SUBJECTS",
    "AnsweredQuestion",
    "DiagnosisResult",
    "Question",
    "QuestionStats",
    "QuizResult",
    "QuizSettings",
    "WeakPointAnalysis",
    "JsonFileStore",
    "QuestionRepository",
    "load_question_bank",
    "UserDataStore",
    "QuestionSelector",
    "QuizSession",
    "SessionState",
    "LearningAnalyzer",
    "DiagnosisService",
    "ModelManager",
    "create_diagnosis_service",
    "HistoryManager",
    "Material",
    "get_recommended_materials",
    "load_materials",
    "ProfileManager",
    "get_device_id",
    "BackgroundSync",
    "RemoteBackend",
    "create_remote_backend",
]
