"""
materials.py
===========================

結果画面で紹介する学習教材のカタログ。

教材は bank/materials.jsonl に 1 行 1 件で置く。
苦手な教科ごとに先頭の教材を 1 つずつ選び、足りなければカタログ順で埋める。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import SUBJECT_NAMES, SUBJECTS

logger = logging.getLogger(__name__)

DEFAULT_MATERIAL_LIMIT = 3


@dataclass(frozen=True)
class Material:
    id: str
    name: str
    description: str
    subject: str
    grades: Tuple[int, ...]
    price: int
    url: str

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("教材 ID が空です")
        if self.subject not in SUBJECTS:
            raise ValueError(f"未知の教科です: {self.subject}")
        if self.price < 0:
            raise ValueError(f"価格が不正です: {self.price}")

    @property
    def subject_name(self) -> str:
        return SUBJECT_NAMES[self.subject]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Material":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            subject=str(data["subject"]),
            grades=tuple(int(g) for g in data.get("grades") or []),
            price=int(data.get("price", 0)),
            url=str(data.get("url", "")),
        )


def load_materials(path: str | Path) -> List[Material]:
    """materials.jsonl を読み込む。壊れた行はスキップしてログに残す。"""
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"教材カタログが見つかりません: {catalog_path}")

    materials: List[Material] = []
    with catalog_path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                materials.append(Material.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                logger.warning("教材カタログ %s:%d をスキップしました: %s", catalog_path, lineno, e)
    return materials


def get_materials_by_subject(materials: Iterable[Material], subject: str) -> List[Material]:
    return [m for m in materials if m.subject == subject]


def get_recommended_materials(
    materials: Sequence[Material],
    weak_subjects: Iterable[str],
    limit: int = DEFAULT_MATERIAL_LIMIT,
) -> List[Material]:
    """
    苦手教科の順に、その教科の先頭の教材を 1 つずつ選ぶ。
    limit に届かなければ、まだ選んでいない教材をカタログ順に足す。
    """
    if limit <= 0:
        return []

    picked: List[Material] = []
    for subject in weak_subjects:
        if len(picked) >= limit:
            break
        first: Optional[Material] = next((m for m in materials if m.subject == subject), None)
        if first is not None and first not in picked:
            picked.append(first)

    for m in materials:
        if len(picked) >= limit:
            break
        if m not in picked:
            picked.append(m)
    return picked[:limit]
