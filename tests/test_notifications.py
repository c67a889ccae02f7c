from __future__ import annotations

from eduflow.utils import notify as notify_mod


def test_badge_invalidated_only_after_commit(db, world, monkeypatch):
    dropped: list[int] = []
    monkeypatch.setattr(notify_mod, "invalidate_badge", dropped.append)

    notify_mod.notify(db, world.teacher.id, "확인해 주세요.")
    assert dropped == []

    db.commit()
    assert dropped == [world.teacher.id]


def test_rolled_back_notification_keeps_badge(db, world, monkeypatch):
    dropped: list[int] = []
    monkeypatch.setattr(notify_mod, "invalidate_badge", dropped.append)

    notify_mod.notify(db, world.teacher.id, "확인해 주세요.")
    db.rollback()
    db.commit()
    assert dropped == []


def test_missing_recipient_is_noop(db):
    assert notify_mod.notify(db, None, "아무도 없음") is None
    assert not db.new


class _BrokenRedis:
    def get(self, key):
        raise ConnectionError("down")

    def setex(self, key, ttl, value):
        raise ConnectionError("down")

    def delete(self, key):
        raise ConnectionError("down")


def test_badge_falls_back_to_db_and_logs(db, world, monkeypatch, caplog):
    from eduflow.utils import badges

    monkeypatch.setattr(badges, "get_redis", lambda: _BrokenRedis())
    notify_mod.notify(db, world.teacher.id, "확인해 주세요.")
    with caplog.at_level("WARNING", logger="eduflow.badges"):
        db.commit()
        assert badges.get_badge_count(db, world.teacher) == 1

    messages = [r.getMessage() for r in caplog.records if r.name == "eduflow.badges"]
    assert any("invalidation failed" in m for m in messages)
    assert any("read failed" in m for m in messages)
