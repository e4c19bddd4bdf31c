from __future__ import annotations

import os
import threading

import pytest

import pkgregistry_core.storage.artifacts as artifacts_module
from pkgregistry_core.errors import ConflictError, NotFoundError, StorageIOError, UsageError
from pkgregistry_core.schemas import PackageMeta
from pkgregistry_core.storage import FileArtifactStore


@pytest.fixture
def store(tmp_path) -> FileArtifactStore:
    root = tmp_path / "packages"
    root.mkdir()
    return FileArtifactStore(root)


def test_new_err_path_does_not_exist(tmp_path) -> None:
    with pytest.raises(UsageError) as exc_info:
        FileArtifactStore(tmp_path / "fapowiejfapowiejf")
    assert "does not exist" in str(exc_info.value)


def test_new_err_path_is_not_a_directory(tmp_path) -> None:
    regular_file = tmp_path / "pyproject.toml"
    regular_file.write_text("", encoding="utf-8")

    with pytest.raises(UsageError) as exc_info:
        FileArtifactStore(regular_file)
    assert "directory" in str(exc_info.value)


@pytest.mark.skipif(os.name != "posix", reason="relies on POSIX permission bits")
def test_new_err_path_is_readonly(tmp_path) -> None:
    readonly = tmp_path / "readonly"
    readonly.mkdir()
    readonly.chmod(0o444)
    try:
        with pytest.raises(UsageError) as exc_info:
            FileArtifactStore(readonly)
    finally:
        readonly.chmod(0o755)
    assert "writeable" in str(exc_info.value)


def test_location_for_is_deterministic_and_distinct(store: FileArtifactStore) -> None:
    assert store.location_for("Foo_Bar", "1.0") == "fs://foo-bar/1.0/foo-bar-1.0.tar.gz"
    assert store.location_for("foo", "1.0", "foo-1.0-py3-none-any.whl") == (
        "fs://foo/1.0/foo-1.0-py3-none-any.whl"
    )
    assert store.location_for("foo", "1.0") != store.location_for("foo", "1.1")

    with pytest.raises(UsageError):
        store.location_for("foo", "1.0", "../escape.whl")


def test_location_for_with_revision_adds_a_directory(store: FileArtifactStore) -> None:
    assert store.location_for("foo", "1.0", "foo-1.0.zip", revision="abc123") == (
        "fs://foo/1.0/abc123/foo-1.0.zip"
    )

    with pytest.raises(UsageError):
        store.location_for("foo", "1.0", revision="..")


def test_resolve_maps_location_under_root(store: FileArtifactStore) -> None:
    meta = PackageMeta(name="foo", version="1.0", location="fs://foo/1.0/foo-1.0.tar.gz")

    assert store.resolve(meta) == store.root / "foo" / "1.0" / "foo-1.0.tar.gz"


@pytest.mark.parametrize(
    "location",
    ["s3://bucket/foo.tar.gz", "fs:///etc/passwd", "fs://../outside.tar.gz", "fs://foo/../../x"],
)
def test_resolve_rejects_foreign_or_escaping_locations(
    store: FileArtifactStore, location: str
) -> None:
    with pytest.raises(UsageError):
        store.resolve(PackageMeta(name="foo", version="1.0", location=location))


@pytest.mark.parametrize("size", [0, 1, 10 * 1024 * 1024])
def test_save_load_roundtrip(store: FileArtifactStore, size: int) -> None:
    data = os.urandom(size)
    address = store.root / "foo" / "1.0" / "foo-1.0.tar.gz"

    store.save(address, data)

    assert store.load(address) == data
    assert store.exists(address)


def test_save_replaces_existing_content(store: FileArtifactStore) -> None:
    address = store.root / "foo.tar.gz"
    store.save(address, b"old content that is longer")
    store.save(address, b"new")

    assert store.load(address) == b"new"


def test_save_leaves_no_scratch_files(store: FileArtifactStore) -> None:
    address = store.root / "foo" / "foo.tar.gz"
    store.save(address, b"payload")

    assert sorted(path.name for path in address.parent.iterdir()) == ["foo.tar.gz"]


def test_failed_rename_keeps_prior_content(store: FileArtifactStore, monkeypatch) -> None:
    address = store.root / "foo.tar.gz"
    store.save(address, b"prior")

    def _broken_replace(src, dst) -> None:
        raise OSError("disk on fire")

    monkeypatch.setattr(artifacts_module.os, "replace", _broken_replace)

    with pytest.raises(StorageIOError) as exc_info:
        store.save(address, b"next")

    assert isinstance(exc_info.value.__cause__, OSError)
    assert address.read_bytes() == b"prior"
    assert sorted(path.name for path in store.root.iterdir()) == ["foo.tar.gz"]


def test_exclusive_save_refuses_existing_address(store: FileArtifactStore) -> None:
    address = store.root / "foo" / "1.0" / "foo-1.0.tar.gz"
    store.save(address, b"first", overwrite=False)

    with pytest.raises(ConflictError):
        store.save(address, b"second", overwrite=False)

    assert store.load(address) == b"first"
    assert sorted(path.name for path in address.parent.iterdir()) == ["foo-1.0.tar.gz"]


def test_concurrent_exclusive_saves_have_one_winner(store: FileArtifactStore) -> None:
    address = store.root / "foo" / "1.0" / "foo-1.0.tar.gz"
    contents = [bytes([index]) * (256 * 1024) for index in range(6)]
    barrier = threading.Barrier(len(contents))
    winners: list[bytes] = []
    conflicts: list[ConflictError] = []
    outcomes_lock = threading.Lock()

    def _writer(data: bytes) -> None:
        barrier.wait()
        try:
            store.save(address, data, overwrite=False)
        except ConflictError as exc:
            with outcomes_lock:
                conflicts.append(exc)
        else:
            with outcomes_lock:
                winners.append(data)

    threads = [threading.Thread(target=_writer, args=(data,)) for data in contents]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(conflicts) == len(contents) - 1
    assert store.load(address) == winners[0]


def test_concurrent_saves_never_mix_content(store: FileArtifactStore) -> None:
    address = store.root / "foo" / "1.0" / "foo-1.0.tar.gz"
    contents = [bytes([index]) * (2 * 1024 * 1024) for index in (1, 2)]
    barrier = threading.Barrier(len(contents))
    errors: list[Exception] = []

    def _writer(data: bytes) -> None:
        barrier.wait()
        try:
            store.save(address, data)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_writer, args=(data,)) for data in contents]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert store.load(address) in contents


def test_reader_sees_whole_file_during_rewrites(store: FileArtifactStore) -> None:
    address = store.root / "foo.tar.gz"
    contents = [b"a" * 512 * 1024, b"b" * 256 * 1024]
    store.save(address, contents[0])
    stop = threading.Event()
    observed: list[bool] = []

    def _reader() -> None:
        while True:
            observed.append(store.load(address) in contents)
            if stop.is_set():
                return

    reader = threading.Thread(target=_reader)
    reader.start()
    try:
        for round_index in range(20):
            store.save(address, contents[round_index % 2])
    finally:
        stop.set()
        reader.join()

    assert observed
    assert all(observed)


def test_load_missing_is_not_found(store: FileArtifactStore) -> None:
    with pytest.raises(NotFoundError):
        store.load(store.root / "missing.tar.gz")


def test_delete_removes_file_and_empty_parents(store: FileArtifactStore) -> None:
    keep = store.root / "foo" / "1.1" / "foo-1.1.tar.gz"
    drop = store.root / "foo" / "1.0" / "foo-1.0.tar.gz"
    store.save(keep, b"keep")
    store.save(drop, b"drop")

    store.delete(drop)

    assert not drop.exists()
    assert not drop.parent.exists()
    assert keep.exists()

    store.delete(keep)
    assert list(store.root.iterdir()) == []
    assert store.root.is_dir()


def test_delete_missing_is_not_found(store: FileArtifactStore) -> None:
    with pytest.raises(NotFoundError):
        store.delete(store.root / "missing.tar.gz")


def test_addresses_outside_root_are_rejected(store: FileArtifactStore, tmp_path) -> None:
    outside = tmp_path / "outside.tar.gz"

    with pytest.raises(UsageError):
        store.save(outside, b"nope")
    with pytest.raises(UsageError):
        store.load(store.root)
    assert not outside.exists()


def test_deletes_and_saves_share_parent_directories(store: FileArtifactStore) -> None:
    errors: list[Exception] = []
    saved: list[str] = []

    def _churn() -> None:
        address = store.root / "foo" / "0.1" / "foo-0.1.tar.gz"
        try:
            for _ in range(200):
                store.save(address, b"short lived")
                store.delete(address)
        except Exception as exc:
            errors.append(exc)

    def _publish() -> None:
        try:
            for index in range(200):
                version = f"1.{index}"
                store.save(store.root / "foo" / version / f"foo-{version}.tar.gz", b"kept")
                saved.append(version)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_churn), threading.Thread(target=_publish)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(saved) == 200
    for version in saved:
        assert store.load(store.root / "foo" / version / f"foo-{version}.tar.gz") == b"kept"
    assert not (store.root / "foo" / "0.1").exists()
