from __future__ import annotations

import random

import pytest

from models.capture_models import MEMORY_WARNING, ErrorCode, SessionStatus
from services.capture_session import DEFAULT_SESSION_NAME, CaptureSessionStore


@pytest.fixture
def store(clock):
    return CaptureSessionStore(max_images=5, memory_limit=10_000, undo_timeout=5.0, clock=clock)


def _assert_invariants(store: CaptureSessionStore) -> None:
    session = store.get_session()
    assert session.image_count == len(session.image_ids)
    assert session.memory_usage >= 0
    assert session.memory_usage == sum(image.size for image in store.get_images())
    assert session.image_count <= store.max_images
    assert session.memory_usage <= store.memory_limit


def test_start_creates_active_session_with_default_name(store):
    result = store.start("  ")

    assert result.success
    assert result.session.status is SessionStatus.ACTIVE
    assert result.session.name == DEFAULT_SESSION_NAME
    assert result.session.image_count == 0
    assert result.session.memory_usage == 0


def test_start_while_active_or_paused_returns_existing_session(store):
    first = store.start("Research").session

    again = store.start("Other")
    assert again.error is ErrorCode.SESSION_ACTIVE
    assert again.session.id == first.id

    store.pause()
    assert store.start("Other").error is ErrorCode.SESSION_ACTIVE


def test_force_start_discards_images_and_undo(store, make_png):
    store.start("Old")
    store.add_image(make_png())
    store.add_image(make_png())
    store.delete_last()

    result = store.force_start("New")

    assert result.success
    assert result.session.name == "New"
    assert store.get_images() == []
    assert store.undo_delete().error is ErrorCode.NOTHING_TO_UNDO


def test_end_keeps_images_until_clear(store, make_png):
    assert store.end().error is ErrorCode.NO_SESSION
    store.start("Run")
    store.add_image(make_png())

    ended = store.end()
    assert ended.session.status is SessionStatus.IDLE
    assert len(store.get_images()) == 1

    store.clear()
    assert store.get_session() is None
    assert store.get_images() == []


def test_pause_resume_transitions(store):
    assert store.pause().error is ErrorCode.NO_SESSION
    assert store.resume().error is ErrorCode.NO_SESSION

    store.start("Run")
    assert store.resume().error is ErrorCode.NOT_PAUSED
    assert store.pause().session.status is SessionStatus.PAUSED
    assert store.pause().error is ErrorCode.NOT_ACTIVE
    assert store.resume().session.status is SessionStatus.ACTIVE


def test_add_image_requires_active_session_and_leaves_state_untouched(store, make_png):
    assert store.add_image(make_png()).error is ErrorCode.NO_ACTIVE_SESSION

    store.start("Run")
    store.add_image(make_png())
    store.pause()
    before = store.get_session().to_dict()

    result = store.add_image(make_png())

    assert result.error is ErrorCode.NO_ACTIVE_SESSION
    assert store.get_session().to_dict() == before


def test_add_image_accepts_data_url_and_keeps_order(store, make_png, to_data_url):
    store.start("Run")
    payloads = [make_png(color=(i * 40, 0, 0)) for i in range(3)]
    for payload in payloads:
        assert store.add_image(to_data_url(payload), {"url": "https://example.com", "title": "Example"}).success

    images = store.get_images()
    assert [image.data for image in images] == payloads
    assert images[0].source_url == "https://example.com"
    assert images[0].source_title == "Example"
    _assert_invariants(store)


def test_add_image_rejects_bad_payload(store):
    store.start("Run")

    assert store.add_image("not a data url").error is ErrorCode.INVALID_PAYLOAD
    assert store.add_image(b"").error is ErrorCode.INVALID_PAYLOAD
    assert store.get_session().image_count == 0


def test_max_images_cap(store, make_png):
    store.start("Run")
    for _ in range(5):
        assert store.add_image(make_png()).success

    result = store.add_image(make_png())

    assert result.error is ErrorCode.MAX_REACHED
    assert store.get_session().image_count == 5


def test_memory_limit_and_warning(clock):
    store = CaptureSessionStore(memory_limit=1000, clock=clock)
    store.start("Run")

    first = store.add_image(b"x" * 700)
    assert first.success and first.warning is None

    second = store.add_image(b"x" * 150)
    assert second.success
    assert second.warning == MEMORY_WARNING
    assert second.memory_usage == 850

    third = store.add_image(b"x" * 151)
    assert third.error is ErrorCode.MEMORY_LIMIT_REACHED
    assert store.get_session().memory_usage == 850

    status = store.get_memory_status()
    assert status["usage"] == 850
    assert status["warning"] is True
    assert status["blocked"] is False


def test_delete_errors(store, make_png):
    assert store.delete_last().error is ErrorCode.NO_SESSION
    store.start("Run")
    assert store.delete_last().error is ErrorCode.NOTHING_TO_DELETE
    assert store.delete_at(0).error is ErrorCode.NOTHING_TO_DELETE

    store.add_image(make_png())
    assert store.delete_at(1).error is ErrorCode.INVALID_INDEX
    assert store.delete_at(-1).error is ErrorCode.INVALID_INDEX


def test_delete_then_undo_restores_identical_image_at_end(store, make_png):
    store.start("Run")
    payloads = [make_png(color=(0, 0, i * 50)) for i in range(3)]
    for payload in payloads:
        store.add_image(payload)
    before = store.get_session()

    deleted = store.delete_at(0)
    assert deleted.count == 2
    assert deleted.memory_usage == before.memory_usage - len(payloads[0])

    restored = store.undo_delete()

    assert restored.success
    assert restored.count == before.image_count
    assert restored.memory_usage == before.memory_usage
    assert [image.data for image in store.get_images()] == [payloads[1], payloads[2], payloads[0]]
    assert store.undo_delete().error is ErrorCode.NOTHING_TO_UNDO
    _assert_invariants(store)


def test_add_delete_last_undo_scenario(store, make_png):
    store.start("Run")
    payload = make_png()
    store.add_image(payload)
    count_before = store.get_session().image_count

    store.delete_last()
    store.undo_delete()

    assert [image.data for image in store.get_images()] == [payload]
    assert store.get_session().image_count == count_before


def test_undo_after_timeout_expires_and_keeps_post_delete_state(store, make_png, clock):
    store.start("Run")
    store.add_image(make_png())
    store.add_image(make_png())
    store.delete_last()
    after_delete = store.get_session().to_dict()

    clock.advance(5.0)
    result = store.undo_delete()

    assert result.error is ErrorCode.UNDO_EXPIRED
    assert store.get_session().to_dict() == after_delete
    assert store.undo_delete().error is ErrorCode.NOTHING_TO_UNDO


def test_undo_only_keeps_latest_deletion(store, make_png):
    store.start("Run")
    first, second = make_png(color=(1, 1, 1)), make_png(color=(2, 2, 2))
    store.add_image(first)
    store.add_image(second)

    store.delete_last()
    store.delete_last()
    store.undo_delete()

    assert [image.data for image in store.get_images()] == [first]
    assert store.undo_delete().error is ErrorCode.NOTHING_TO_UNDO


def test_undo_after_session_cleared_reports_no_session(store, make_png):
    store.start("Run")
    store.add_image(make_png())
    store.delete_last()
    store._session = None

    assert store.undo_delete().error is ErrorCode.NO_SESSION


def test_undo_does_not_overfill_a_session_refilled_since_the_delete(store, make_png):
    store.start("Run")
    for width in range(40, 45):
        store.add_image(make_png(width, 30))
    store.delete_last()
    store.add_image(make_png(60, 30))

    result = store.undo_delete()

    assert result.error is ErrorCode.MAX_REACHED
    assert store.get_session().image_count == 5
    _assert_invariants(store)


def test_undo_respects_the_memory_cap(store):
    store.start("Run")
    store.add_image(b"a" * 4_000)
    store.delete_last()
    store.add_image(b"b" * 7_000)

    result = store.undo_delete()

    assert result.error is ErrorCode.MEMORY_LIMIT_REACHED
    assert store.get_session().memory_usage == 7_000


def test_random_operation_sequences_preserve_counters(clock):
    rng = random.Random(1234)
    store = CaptureSessionStore(max_images=8, memory_limit=5_000, clock=clock)
    store.start("Fuzz")

    for _ in range(400):
        op = rng.choice(["add", "add", "delete_last", "delete_at", "undo", "tick"])
        if op == "add":
            store.add_image(b"z" * rng.randint(1, 900))
        elif op == "delete_last":
            store.delete_last()
        elif op == "delete_at":
            store.delete_at(rng.randint(-1, 9))
        elif op == "undo":
            store.undo_delete()
        else:
            clock.advance(rng.choice([0.5, 3.0, 6.0]))
        _assert_invariants(store)


def test_thumbnails_follow_session_order(store, make_png):
    store.start("Run")
    store.add_image(make_png(400, 300), {"url": "u1", "title": "t1"})
    store.add_image(b"not an image", {"url": "u2", "title": "t2"})

    thumbs = store.get_thumbnails()

    assert [thumb["url"] for thumb in thumbs] == ["u1", "u2"]
    assert thumbs[0]["thumbnail"].startswith("data:image/png;base64,")
    assert thumbs[1]["thumbnail"] is None
    assert thumbs[0]["hasText"] is False


def test_export_rejects_empty_session_before_generation(store, monkeypatch):
    calls = []
    monkeypatch.setattr(store.exporter, "generate", lambda *args, **kwargs: calls.append(args))

    assert store.export_document().error is ErrorCode.NO_SESSION
    store.start("Empty")
    result = store.export_document()

    assert result.error is ErrorCode.NO_SCREENSHOTS
    assert calls == []


def test_export_uses_session_name_and_filename_override(store, make_png):
    store.start("My Research: Notes")
    store.add_image(make_png())

    default = store.export_document()
    assert default.document.filename == "My_Research_Notes.pdf"
    assert default.document.page_count == 1

    custom = store.export_document("final report.pdf")
    assert custom.document.filename == "final_report.pdf"


def test_snapshot_restore_round_trip(store, make_png, clock):
    store.start("Persisted")
    store.add_image(make_png(color=(9, 9, 9)))
    store.add_image(make_png(color=(8, 8, 8)))
    store.delete_last()
    snapshot = store.snapshot()

    fresh = CaptureSessionStore(max_images=5, memory_limit=10_000, clock=clock)
    fresh.restore(snapshot)

    assert fresh.get_session().to_dict() == store.get_session().to_dict()
    assert [image.data for image in fresh.get_images()] == [image.data for image in store.get_images()]
    assert fresh.undo_delete().success
    _assert_invariants(fresh)
