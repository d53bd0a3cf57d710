import re

import pytest

from fakes import make_upload
from wastage_service.services import attachment_store
from wastage_service.services.attachment_store import AttachmentStore

STORED_NAME = re.compile(r"^/uploads/wastage/CH-7/[0-9a-f]{32}\.(jpg|jpeg|png|gif)$")


@pytest.fixture
def store(tmp_path):
    return AttachmentStore(tmp_path)


@pytest.mark.anyio
async def test_saves_allowed_images_under_challan_folder(store, tmp_path):
    urls = await store.save([make_upload("Front View.JPG", b"abc")], "CH-7")

    assert len(urls) == 1
    assert STORED_NAME.match(urls[0])
    assert "Front" not in urls[0]
    stored = tmp_path / urls[0].lstrip("/")
    assert stored.read_bytes() == b"abc"


@pytest.mark.anyio
async def test_batch_with_one_invalid_file_keeps_the_rest_in_order(store):
    urls = await store.save(
        [make_upload("one.png"), make_upload("setup.exe"), make_upload("two.gif")],
        "CH-7",
    )

    assert len(urls) == 2
    assert urls[0].endswith(".png")
    assert urls[1].endswith(".gif")


@pytest.mark.anyio
async def test_oversized_and_empty_files_are_skipped(store, tmp_path):
    too_big = make_upload("huge.jpg", b"0" * (11 * 1024 * 1024))
    empty = make_upload("empty.jpg", b"")

    urls = await store.save([too_big, empty], "CH-7")

    assert urls == []
    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


@pytest.mark.anyio
async def test_file_at_the_size_limit_is_accepted(tmp_path):
    store = AttachmentStore(tmp_path, max_bytes=16)

    urls = await store.save([make_upload("ok.jpeg", b"x" * 16)], "CH-7")

    assert len(urls) == 1


@pytest.mark.anyio
async def test_failed_write_skips_only_that_file(store, monkeypatch):
    real_write = attachment_store._write_bytes
    calls = {"count": 0}

    def flaky_write(path, contents):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OSError("disk full")
        real_write(path, contents)

    monkeypatch.setattr(attachment_store, "_write_bytes", flaky_write)

    urls = await store.save([make_upload("a.jpg"), make_upload("b.jpg")], "CH-7")

    assert len(urls) == 1
    assert calls["count"] == 2


@pytest.mark.anyio
@pytest.mark.parametrize("scope_key", ["", "..", "a/b", "a\\b"])
async def test_scope_key_cannot_escape_the_upload_folder(store, scope_key):
    with pytest.raises(ValueError):
        await store.save([make_upload("a.jpg")], scope_key)


@pytest.mark.anyio
async def test_delete_removes_files_and_tolerates_missing_ones(store, tmp_path):
    urls = await store.save([make_upload("a.jpg"), make_upload("b.jpg")], "CH-7")

    removed = await store.delete(urls + ["/uploads/wastage/CH-7/missing.jpg"])

    assert removed == 2
    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


@pytest.mark.anyio
async def test_delete_refuses_paths_outside_the_root(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "secret.txt"
    outside.write_text("keep me")
    store = AttachmentStore(root)

    removed = await store.delete(["/../secret.txt"])

    assert removed == 0
    assert outside.exists()
