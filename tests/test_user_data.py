from __future__ import annotations

from conftest import FakeRemote

from gakuho_quiz.models import QuestionStats
from gakuho_quiz.remote import BackgroundSync
from gakuho_quiz.storage import STORAGE_KEYS
from gakuho_quiz.user_data import UserDataStore


def test_fresh_store_has_empty_structure(user_data):
    assert user_data.get_user_data() == {"highScores": {}, "questionStats": {}}
    assert user_data.get_question_stats() == {}
    assert user_data.get_high_scores() == {}


def test_batch_update_accumulates(user_data):
    user_data.update_multiple_question_stats(
        [
            {"question_id": "ma-001", "is_correct": True},
            {"question_id": "ma-001", "is_correct": False},
            {"question_id": "en-001", "is_correct": True},
        ]
    )
    user_data.update_question_stats("ma-001", False)

    stats = user_data.get_question_stats()
    assert stats["ma-001"] == QuestionStats(attempts=3, correct=1)
    assert stats["en-001"] == QuestionStats(attempts=1, correct=1)


def test_stats_are_persisted_in_original_layout(store, user_data):
    user_data.update_question_stats("sc-001", True)
    raw = store.get_item(STORAGE_KEYS["USER_DATA"])
    assert raw["questionStats"] == {"sc-001": {"attempts": 1, "correct": 1}}


def test_broken_blob_is_repaired(store):
    store.set_item(STORAGE_KEYS["USER_DATA"], {"highScores": None})
    data = UserDataStore(store).get_user_data()
    assert data == {"highScores": {}, "questionStats": {}}


def test_high_score_only_moves_up(user_data):
    assert user_data.update_high_score("normal_math_30", 500, 3, 5, 30) is True
    assert user_data.update_high_score("normal_math_30", 400, 2, 5, 30) is False
    assert user_data.update_high_score("normal_math_30", 500, 3, 5, 30) is False
    assert user_data.update_high_score("normal_math_30", 800, 4, 5, 30) is True
    assert user_data.get_high_scores() == {"normal_math_30": 800}


def test_reset_clears_everything(user_data):
    user_data.update_question_stats("ma-001", True)
    user_data.update_high_score("k", 100, 1, 1, 30)
    user_data.reset()
    assert user_data.get_question_stats() == {}
    assert user_data.get_high_scores() == {}


def test_changes_are_mirrored_in_background(store):
    remote = FakeRemote()
    sync = BackgroundSync(max_workers=1)
    data = UserDataStore(store, remote=remote, sync=sync)

    data.update_multiple_question_stats(
        [
            {"question_id": "ma-001", "is_correct": True},
            {"question_id": "ma-002", "is_correct": False},
        ]
    )
    data.update_high_score("normal_math_30", 300, 2, 2, 30)
    sync.wait(timeout=5)
    sync.shutdown()

    assert sorted(remote.synced) == [("ma-001", 1, 1), ("ma-002", 1, 0)]
    assert remote.submitted == [("normal_math_30", 300, 2, 2, 30)]


def test_remote_failure_does_not_break_local_update(store):
    class BrokenRemote(FakeRemote):
        def sync_stats(self, question_id, stats):
            raise RuntimeError("network down")

    sync = BackgroundSync(max_workers=1)
    data = UserDataStore(store, remote=BrokenRemote(), sync=sync)
    data.update_question_stats("ma-001", True)
    sync.wait(timeout=5)
    sync.shutdown()

    assert data.get_question_stats()["ma-001"].attempts == 1
