"""
profile.py
======================

端末 ID とニックネーム（ユーザープロファイル）を扱うモジュール。

- get_device_id: 端末ごとの匿名 ID。初回に作って以後は同じ値を返す
- validate_nickname: ランキングに表示するニックネームの入力チェック
- ProfileManager: プロファイルの保存と、Supabase への投げっぱなし同期
"""

from __future__ import annotations

import logging
import random
import string
import time
from typing import TYPE_CHECKING, Optional

from .models import UserProfile
from .storage import STORAGE_KEYS, JsonFileStore

if TYPE_CHECKING:
    from .remote import BackgroundSync, RemoteBackend

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = STORAGE_KEYS["DEVICE_ID"]
PROFILE_KEY = STORAGE_KEYS["USER_PROFILE"]

NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 12
NG_WORDS = ("admin", "test", "null", "undefined")

# 紛らわしい文字 (I, O, 0, 1) を除いた英数字
INVITE_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 6

_BASE36 = string.digits + string.ascii_lowercase


def get_device_id(store: JsonFileStore) -> str:
    """保存済みの端末 ID を返す。無ければ device-<ms>-<9 文字> を作って保存する。"""
    device_id = store.get_item(DEVICE_ID_KEY)
    if isinstance(device_id, str) and device_id:
        return device_id

    suffix = "".join(random.choices(_BASE36, k=9))
    device_id = f"device-{int(time.time() * 1000)}-{suffix}"
    store.set_item(DEVICE_ID_KEY, device_id)
    logger.info("端末 ID を新規作成しました: %s", device_id)
    return device_id


def validate_nickname(nickname: str) -> Optional[str]:
    """問題があればエラーメッセージ、無ければ None。"""
    trimmed = nickname.strip()
    if not trimmed:
        return "ニックネームを入力してね"
    if len(trimmed) < NICKNAME_MIN_LENGTH:
        return f"{NICKNAME_MIN_LENGTH}文字以上で入力してね"
    if len(trimmed) > NICKNAME_MAX_LENGTH:
        return f"{NICKNAME_MAX_LENGTH}文字以内で入力してね"
    lowered = trimmed.lower()
    if any(word in lowered for word in NG_WORDS):
        return "この名前は使えないよ"
    return None


def generate_invite_code() -> str:
    return "".join(random.choices(INVITE_CODE_CHARS, k=INVITE_CODE_LENGTH))


class ProfileManager:
    """
    ローカルのプロファイルを正とし、変更のたびにリモートへ同期を依頼する。
    """

    def __init__(
        self,
        store: JsonFileStore,
        remote: Optional["RemoteBackend"] = None,
        sync: Optional["BackgroundSync"] = None,
    ):
        self.store = store
        self.remote = remote
        self.sync = sync

    def get_user_profile(self) -> Optional[UserProfile]:
        raw = self.store.get_item(PROFILE_KEY)
        if not isinstance(raw, dict):
            return None
        return UserProfile.from_dict(raw)

    def save_user_profile(self, nickname: str) -> UserProfile:
        """
        新しいプロファイルを作って保存する。
        ニックネームが不正なら ValueError（メッセージは画面にそのまま出せる）。
        """
        error = validate_nickname(nickname)
        if error:
            raise ValueError(error)

        profile = UserProfile(
            nickname=nickname.strip(),
            device_id=get_device_id(self.store),
            invite_code=generate_invite_code(),
            created_at=int(time.time() * 1000),
        )
        self._store_profile(profile)
        return profile

    def update_nickname(self, nickname: str) -> UserProfile:
        """既存プロファイルのニックネームだけを変える。未登録なら新規作成。"""
        current = self.get_user_profile()
        if current is None:
            return self.save_user_profile(nickname)

        error = validate_nickname(nickname)
        if error:
            raise ValueError(error)

        current.nickname = nickname.strip()
        self._store_profile(current)
        return current

    def _store_profile(self, profile: UserProfile) -> None:
        self.store.set_item(PROFILE_KEY, profile.to_dict())
        if self.remote is not None and self.sync is not None:
            self.sync.submit(self.remote.sync_profile, profile, description="sync_profile")
