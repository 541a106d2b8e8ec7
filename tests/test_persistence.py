from __future__ import annotations

import asyncio
import json

import pytest
from conftest import FakeClock

from dal.capture_dal import CaptureSessionDAL
from dal.upload_snapshot_dal import UploadSnapshotDAL
from models.capture_models import BoundingBox, RecognitionAnnotation, RecognizedWord
from services.capture_session import CaptureSessionStore
from services.upload_broker import DAY_SECONDS, UploadBroker
from utils.database_cleaner import BrokerCleaner
from utils.database_init import AsyncDatabaseInitializer


def test_database_dir_must_be_a_directory(tmp_path, monkeypatch):
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x")
    monkeypatch.delenv("DATABASE_DIR", raising=False)

    with pytest.raises(RuntimeError):
        AsyncDatabaseInitializer(not_a_dir)
    with pytest.raises(RuntimeError):
        AsyncDatabaseInitializer()


def test_capture_snapshot_round_trip(tmp_path, make_png):
    clock = FakeClock()
    store = CaptureSessionStore(clock=clock)
    store.start("Receipts")
    for width in (40, 50, 60):
        store.add_image(make_png(width, 30), {"url": "https://shop.example", "title": f"w{width}"})
    first = store.get_images()[0]
    first.annotation = RecognitionAnnotation(
        text="Total",
        words=[RecognizedWord(text="Total", bbox=BoundingBox(1, 2, 30, 12), confidence=0.9)],
        source_width=40,
        source_height=30,
        attempted=True,
    )
    store.delete_at(1)

    async def run():
        dal = CaptureSessionDAL(AsyncDatabaseInitializer(tmp_path))
        await dal.save(store.snapshot())
        return await dal.load()

    loaded = asyncio.run(run())

    assert loaded.session.name == "Receipts"
    assert loaded.session.image_count == 2
    assert [image.source_title for image in loaded.images] == ["w40", "w60"]
    assert loaded.images[0].data == first.data
    assert loaded.images[0].annotation.words[0].bbox == BoundingBox(1, 2, 30, 12)
    assert loaded.undo.image.source_title == "w50"
    assert loaded.undo.removed_at == clock.now

    restored = CaptureSessionStore(clock=clock)
    restored.restore(loaded)
    assert restored.undo_delete().success
    assert [image.source_title for image in restored.get_images()] == ["w40", "w60", "w50"]


def test_saving_an_empty_store_clears_rows(tmp_path, make_png):
    store = CaptureSessionStore()
    store.start()
    store.add_image(make_png())

    async def run():
        dal = CaptureSessionDAL(AsyncDatabaseInitializer(tmp_path))
        await dal.save(store.snapshot())
        store.clear()
        await dal.save(store.snapshot())
        return await dal.load()

    loaded = asyncio.run(run())

    assert loaded.session is None
    assert loaded.images == []
    assert loaded.undo is None


def test_upload_snapshot_save_and_load(tmp_path):
    broker = UploadBroker()
    session, _ = broker.create("Phone")
    broker.add_image(session.id, "data:image/png;base64,AAAA", text="hello")
    dal = UploadSnapshotDAL(tmp_path)

    assert asyncio.run(dal.save(broker.snapshot()))
    records = asyncio.run(dal.load())

    other = UploadBroker()
    assert other.restore(records) == 1
    assert other.validate(session.id, session.token)
    assert other.recognized_texts(session.id) == ["hello"]


def test_upload_snapshot_ignores_unreadable_files(tmp_path):
    dal = UploadSnapshotDAL(tmp_path)
    assert asyncio.run(dal.load()) == []

    dal.path.write_text("{not json")
    assert asyncio.run(dal.load()) == []

    dal.path.write_text(json.dumps({"sessions": "nope"}))
    assert asyncio.run(dal.load()) == []


def test_cleaner_prunes_and_rewrites_snapshot(tmp_path):
    clock = FakeClock()
    broker = UploadBroker(clock=clock)
    old, _ = broker.create("old")
    clock.advance(6 * DAY_SECONDS)
    fresh, _ = broker.create("fresh")
    clock.advance(DAY_SECONDS)
    dal = UploadSnapshotDAL(tmp_path)
    cleaner = BrokerCleaner(broker, dal)

    removed = asyncio.run(cleaner.prune_expired_sessions())
    records = asyncio.run(dal.load())

    assert removed == 1
    assert broker.count() == 1
    assert [record["id"] for record in records] == [fresh.id]
    assert old.id not in {record["id"] for record in records}


def test_periodic_cleanup_stops_on_cancel():
    broker = UploadBroker()

    async def run():
        cleaner = BrokerCleaner(broker)
        task = asyncio.create_task(cleaner.run_periodic_cleanup(interval_seconds=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        await task
        return task

    task = asyncio.run(run())

    assert task.done()


def test_later_saves_write_only_new_image_bytes(tmp_path, make_png, monkeypatch):
    store = CaptureSessionStore()
    store.start("Incremental")
    for width in (40, 50, 60):
        store.add_image(make_png(width, 30), {"title": f"w{width}"})
    written = []
    original_params = CaptureSessionDAL._image_params

    def counting_params(image, position):
        written.append(image.source_title)
        return original_params(image, position)

    monkeypatch.setattr(CaptureSessionDAL, "_image_params", staticmethod(counting_params))

    async def run():
        dal = CaptureSessionDAL(AsyncDatabaseInitializer(tmp_path))
        await dal.save(store.snapshot())
        written.clear()

        store.delete_at(0)
        store.add_image(make_png(70, 30), {"title": "w70"})
        store.get_images()[0].annotation = RecognitionAnnotation(text="late result", attempted=True)
        await dal.save(store.snapshot())
        return await dal.load()

    loaded = asyncio.run(run())

    assert written == ["w70"]
    assert [image.source_title for image in loaded.images] == ["w50", "w60", "w70"]
    assert loaded.images[0].annotation.text == "late result"
    assert loaded.undo.image.source_title == "w40"
    assert loaded.session.image_count == 3
