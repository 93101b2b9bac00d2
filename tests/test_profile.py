from __future__ import annotations

import re

import pytest
from conftest import FakeRemote

from gakuho_quiz.profile import (
    INVITE_CODE_CHARS,
    ProfileManager,
    generate_invite_code,
    get_device_id,
    validate_nickname,
)
from gakuho_quiz.remote import BackgroundSync


def test_device_id_is_created_once(store):
    first = get_device_id(store)
    assert re.fullmatch(r"device-\d+-[0-9a-z]{9}", first)
    assert get_device_id(store) == first


@pytest.mark.parametrize(
    "name, message",
    [
        ("", "ニックネームを入力してね"),
        ("   ", "ニックネームを入力してね"),
        ("あ", "2文字以上で入力してね"),
        ("あ" * 13, "12文字以内で入力してね"),
        ("TestUser", "この名前は使えないよ"),
        ("admin2", "この名前は使えないよ"),
        ("がくまる", None),
        ("  たろう  ", None),
    ],
)
def test_validate_nickname(name, message):
    assert validate_nickname(name) == message


def test_invite_code_alphabet():
    code = generate_invite_code()
    assert len(code) == 6
    assert all(c in INVITE_CODE_CHARS for c in code)


def test_save_and_update_profile(store):
    profiles = ProfileManager(store)
    assert profiles.get_user_profile() is None

    created = profiles.save_user_profile("  がくまる ")
    assert created.nickname == "がくまる"
    assert created.device_id == get_device_id(store)

    updated = profiles.update_nickname("たろう")
    assert updated.nickname == "たろう"
    assert updated.invite_code == created.invite_code
    assert profiles.get_user_profile() == updated


def test_invalid_nickname_raises_with_message(store):
    profiles = ProfileManager(store)
    with pytest.raises(ValueError, match="2文字以上"):
        profiles.update_nickname("x")
    assert profiles.get_user_profile() is None


def test_profile_changes_are_synced(store):
    remote = FakeRemote()
    sync = BackgroundSync(max_workers=1)
    ProfileManager(store, remote=remote, sync=sync).update_nickname("はなこ")
    sync.wait(timeout=5)
    sync.shutdown()
    assert [p.nickname for p in remote.profiles] == ["はなこ"]
