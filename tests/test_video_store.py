import os

import pytest

from conftest import MAX_TEST_UPLOAD
from errors import AssetTooLarge, InvalidAsset


async def test_store_writes_blob_and_metadata(store, make_upload, upload_dir):
    data = os.urandom(5000)
    asset = await store.store(make_upload(data, filename="Trip.MP4"))

    assert asset.size == 5000
    assert asset.filename == "Trip.MP4"
    assert asset.mime_type == "video/mp4"
    assert asset.path == os.path.join(upload_dir, f"{asset.id}.mp4")
    with open(asset.path, "rb") as f:
        assert f.read() == data
    assert await store.get(asset.id) == asset


async def test_rejects_non_video_types(store, make_upload, upload_dir):
    with pytest.raises(InvalidAsset):
        await store.store(make_upload(b"hello", filename="notes.txt", content_type="text/plain"))
    assert os.listdir(upload_dir) == []


async def test_rejects_declared_oversize_upload(store, make_upload, upload_dir):
    with pytest.raises(AssetTooLarge):
        await store.store(make_upload(b"x" * (MAX_TEST_UPLOAD + 1)))
    assert os.listdir(upload_dir) == []


async def test_oversize_stream_removes_partial_blob(store, make_upload, upload_dir):
    # no declared size, so the limit trips while streaming
    with pytest.raises(AssetTooLarge):
        await store.store(make_upload(b"x" * (MAX_TEST_UPLOAD * 3), size=False))
    assert os.listdir(upload_dir) == []
    assert len(store) == 0


async def test_rejects_empty_upload(store, make_upload, upload_dir):
    with pytest.raises(InvalidAsset):
        await store.store(make_upload(b""))
    assert os.listdir(upload_dir) == []


async def test_delete_removes_blob(store, make_upload):
    asset = await store.store(make_upload())
    assert await store.delete(asset.id) is True
    assert not os.path.exists(asset.path)
    assert await store.get(asset.id) is None
    assert await store.delete(asset.id) is False
    assert await store.delete(None) is False


async def test_get_returns_none_when_blob_vanished(store, make_upload):
    asset = await store.store(make_upload())
    os.remove(asset.path)
    assert await store.get(asset.id) is None


async def test_purge_orphans_keeps_registered_blobs(store, make_upload, upload_dir):
    asset = await store.store(make_upload())
    orphan = os.path.join(upload_dir, "0123456789abcdef0123456789abcdef.mp4")
    unrelated = os.path.join(upload_dir, "README.txt")
    for path in (orphan, unrelated):
        with open(path, "wb") as f:
            f.write(b"left over")

    assert await store.purge_orphans() == 1
    assert not os.path.exists(orphan)
    assert os.path.exists(unrelated)
    assert os.path.exists(asset.path)
