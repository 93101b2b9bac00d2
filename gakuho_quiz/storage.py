"""
storage.py
======================

端末ローカルのキー・バリューストア。

1 つの JSON ファイルに {キー: 値} をまとめて保存する。
値は JSON に変換できるものであれば何でもよい（中身は呼び出し側が解釈する）。

- ファイルが無い / 壊れている場合は空として扱う（ログのみ）
- 書き込みは毎回ファイル全体を置き換える（last-write-wins）
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# 元アプリのキー名を踏襲
STORAGE_KEYS: Dict[str, str] = {
    "USER_DATA": "@gakuho_quiz_user_data",
    "CUSTOM_QUESTIONS": "@gakuho_quiz_custom_questions",
    "DEVICE_ID": "@gakuho_quiz_device_id",
    "LAST_QUIZ_RESULT": "@gakuho_quiz_last_result",
    "USER_PROFILE": "@gakuho_quiz_user_profile",
}


class JsonFileStore:
    """
    JSON ファイル 1 つをバックエンドとするストア。

    get_item / set_item / remove_item / clear の 4 操作だけを持つ。
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # ロード / セーブ
    # ------------------------------------------------------------------
    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("ローカルストアを読み込めませんでした (%s): %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("ローカルストアの形式が不正です: %s", self.path)
            return {}
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        tmp.replace(self.path)

    # ------------------------------------------------------------------
    # 公開 API
    # ------------------------------------------------------------------
    def get_item(self, key: str, default: Optional[Any] = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set_item(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def clear(self) -> None:
        with self._lock:
            self._save({})
