"""
logging_config.py
======================

アプリ全体のログ設定。各モジュールは logging.getLogger(__name__) を使う。
"""

from __future__ import annotations

import logging
from logging import Logger


def configure_logging(level: str = "INFO") -> Logger:
    """ルートロガーを設定し、パッケージのロガーを返す。"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("gakuho_quiz")
