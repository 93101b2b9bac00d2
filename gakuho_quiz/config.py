"""
config.py
=========

アプリ全体で利用する設定値を一元管理する。
Streamlit 画面、Gemini API、Supabase、ファイルパス、タイムアウトなど
すべてこのクラスを通じて取得する。

優先順位:
1. 環境変数（GEMINI_API_KEY / SUPABASE_URL / SUPABASE_ANON_KEY）
2. ルートの .env
3. ルートの config.toml（[app] / [gemini] / [remote]）
4. 既定値
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# 基本パス定義
# ------------------------------------------------------------

PACKAGE_DIR = Path(__file__).resolve().parent
ROOT_DIR = PACKAGE_DIR.parent
BANK_DIR = PACKAGE_DIR / "bank"
DATA_DIR = ROOT_DIR / "data"


# ------------------------------------------------------------
# AppConfig
# ------------------------------------------------------------

@dataclass
class AppConfig:
    """
    アプリ設定クラス。

    - APIキー / 接続先の読み取り
    - 組み込み問題バンク・ローカル保存先のパス
    - リモート取得・AI 診断のタイムアウト
    """

    # ---------- アプリ ----------
    app_name: str = "ドキドキ!クイズチャレンジ"
    default_question_count: int = 10
    log_level: str = "INFO"

    # ---------- API ----------
    gemini_api_key: str = ""
    preferred_model: Optional[str] = None
    supabase_url: str = ""
    supabase_key: str = ""

    # ---------- タイムアウト（秒） ----------
    remote_timeout_seconds: float = 3.0
    diagnosis_timeout_seconds: float = 15.0

    # ---------- ファイルパス ----------
    question_bank_path: Path = BANK_DIR / "question_bank.jsonl"
    materials_path: Path = BANK_DIR / "materials.jsonl"
    local_store_path: Path = DATA_DIR / "local_store.json"
    config_toml_path: Path = ROOT_DIR / "config.toml"

    # ============================================================
    # 生成
    # ============================================================

    @classmethod
    def load(cls, toml_path: Optional[Path] = None, env_path: Optional[Path] = None) -> "AppConfig":
        """
        config.toml と環境変数から設定を組み立てる。
        config.toml が無い・壊れている場合は既定値のまま進める。
        """
        cfg = cls()
        if toml_path is not None:
            cfg.config_toml_path = Path(toml_path)

        cfg._apply_toml(cfg._read_toml(cfg.config_toml_path))

        env_file = Path(env_path) if env_path is not None else ROOT_DIR / ".env"
        dotenv = _read_dotenv(env_file)

        cfg.gemini_api_key = _lookup("GEMINI_API_KEY", dotenv) or cfg.gemini_api_key
        cfg.supabase_url = _lookup("SUPABASE_URL", dotenv) or cfg.supabase_url
        cfg.supabase_key = _lookup("SUPABASE_ANON_KEY", dotenv) or cfg.supabase_key
        return cfg

    # ============================================================
    # 内部関数
    # ============================================================

    @staticmethod
    def _read_toml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            return toml.load(str(path))
        except (toml.TomlDecodeError, OSError) as e:
            logger.warning("config.toml を読み込めませんでした (%s): %s", path, e)
            return {}

    def _apply_toml(self, data: Dict[str, Any]) -> None:
        app = data.get("app")
        if isinstance(app, dict):
            self.app_name = str(app.get("name", self.app_name))
            self.default_question_count = int(
                app.get("default_question_count", self.default_question_count)
            )
            self.log_level = str(app.get("log_level", self.log_level))
            store = app.get("local_store_path")
            if isinstance(store, str) and store:
                self.local_store_path = ROOT_DIR / store

        gem = data.get("gemini")
        if isinstance(gem, dict):
            p = gem.get("preferred_model")
            if isinstance(p, str) and p:
                self.preferred_model = p
            self.diagnosis_timeout_seconds = float(
                gem.get("timeout_seconds", self.diagnosis_timeout_seconds)
            )

        remote = data.get("remote")
        if isinstance(remote, dict):
            self.supabase_url = str(remote.get("url", self.supabase_url))
            self.supabase_key = str(remote.get("anon_key", self.supabase_key))
            self.remote_timeout_seconds = float(
                remote.get("timeout_seconds", self.remote_timeout_seconds)
            )

    @property
    def has_gemini(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _read_dotenv(path: Path) -> Dict[str, str]:
    """ローカル開発用の .env を KEY=VALUE として読む。"""
    values: Dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def _lookup(name: str, dotenv: Dict[str, str]) -> str:
    return os.environ.get(name) or dotenv.get(name, "")
