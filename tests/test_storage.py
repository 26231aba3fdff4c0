import pytest

from pagegate.errors import ArtifactNotFound
from pagegate.storage import FallbackArtifactStore, InMemoryArtifactStore, LocalArtifactStore


def test_in_memory_round_trip():
    store = InMemoryArtifactStore()
    key = store.put(b"%PDF-1.7", "application/pdf")
    assert key.endswith(".pdf")
    assert store.get(key) == b"%PDF-1.7"
    assert store.content_type(key) == "application/pdf"
    with pytest.raises(ArtifactNotFound):
        store.get("missing.pdf")


def test_local_store_writes_files(tmp_path):
    store = LocalArtifactStore(tmp_path / "artifacts")
    key = store.put(b"png-bytes", "image/png")
    assert (tmp_path / "artifacts" / key).read_bytes() == b"png-bytes"
    assert store.content_type(key) == "image/png"


@pytest.mark.parametrize("locator", ["../secret.pdf", "a/b.pdf", "", ".hidden"])
def test_local_store_rejects_foreign_locators(tmp_path, locator):
    store = LocalArtifactStore(tmp_path)
    with pytest.raises(ArtifactNotFound):
        store.get(locator)


def test_fallback_store_uses_secondary_when_primary_fails():
    class Broken(InMemoryArtifactStore):
        def put(self, content, content_type):
            raise ConnectionError("bucket unreachable")

    secondary = InMemoryArtifactStore()
    store = FallbackArtifactStore(Broken(), secondary)
    key = store.put(b"data", "application/pdf")
    assert len(secondary) == 1
    assert store.get(key) == b"data"
    assert store.content_type(key) == "application/pdf"


def test_delete_removes_artifacts_and_ignores_unknown(tmp_path):
    memory = InMemoryArtifactStore()
    local = LocalArtifactStore(tmp_path)
    for store in (memory, local):
        key = store.put(b"data", "image/png")
        store.delete(key)
        store.delete(key)
        store.delete("../outside.png")
        with pytest.raises(ArtifactNotFound):
            store.get(key)
    assert list(tmp_path.iterdir()) == []


def test_fallback_store_deletes_from_both():
    primary, secondary = InMemoryArtifactStore(), InMemoryArtifactStore()
    store = FallbackArtifactStore(primary, secondary)
    a = primary.put(b"a", "application/pdf")
    b = secondary.put(b"b", "application/pdf")
    store.delete(a)
    store.delete(b)
    assert len(primary) == 0
    assert len(secondary) == 0
