import pytest
from botocore.exceptions import ClientError

from processflow.core.errors import StorageCleanupFailure
from processflow.services import blob_store as blob_store_module
from processflow.services.blob_store import BlobStoreNotConfigured, LocalBlobStore, S3BlobStore, is_custom_icon


def test_local_store_copies_and_removes(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    (tmp_path / "uploads").mkdir()
    (tmp_path / "uploads" / "a.png").write_bytes(b"png")

    store.copy("uploads/a.png", "uploads/copies/a.png")
    assert (tmp_path / "uploads" / "copies" / "a.png").read_bytes() == b"png"

    store.remove(["uploads/a.png", "/uploads/copies/a.png", "uploads/missing.png"])
    assert not (tmp_path / "uploads" / "a.png").exists()
    assert not (tmp_path / "uploads" / "copies" / "a.png").exists()


def test_local_store_refuses_keys_outside_root(tmp_path):
    store = LocalBlobStore(str(tmp_path / "root"))

    with pytest.raises(StorageCleanupFailure):
        store.remove(["../outside.png"])
    with pytest.raises(StorageCleanupFailure):
        store.copy("../outside.png", "inside.png")


def test_local_store_reports_missing_copy_source(tmp_path):
    store = LocalBlobStore(str(tmp_path))

    with pytest.raises(StorageCleanupFailure):
        store.copy("uploads/nope.png", "uploads/copy.png")


def test_custom_icon_detection():
    assert is_custom_icon("/step-icons/custom/12.svg")
    assert is_custom_icon("https://cdn.example.com/uploads/u7/icons/star.svg")
    assert not is_custom_icon("/step-icons/default-icons/begin.svg")
    assert not is_custom_icon("uploads/images/photo.png")
    assert not is_custom_icon(None)


class DummyS3Client:
    def __init__(self, errors=None, fail=False):
        self.deleted = []
        self.copies = []
        self.errors = errors or []
        self.fail = fail

    def delete_objects(self, Bucket: str, Delete: dict):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObjects")
        assert Bucket == "processflow-assets"
        assert Delete["Quiet"] is True
        self.deleted.append([obj["Key"] for obj in Delete["Objects"]])
        return {"Errors": self.errors}

    def copy_object(self, Bucket: str, Key: str, CopySource: dict):
        if self.fail:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "CopyObject")
        self.copies.append((CopySource["Bucket"], CopySource["Key"], Bucket, Key))


def test_s3_store_deletes_in_batches():
    client = DummyS3Client()
    store = S3BlobStore("processflow-assets", client=client)

    keys = [f"uploads/images/{i}.png" for i in range(1001)] + ["/uploads/images/0.png"]
    store.remove(keys)

    assert [len(batch) for batch in client.deleted] == [1000, 1]
    assert client.deleted[0][0] == "uploads/images/0.png"


def test_s3_store_reports_per_key_errors():
    client = DummyS3Client(errors=[{"Key": "uploads/images/a.png", "Code": "AccessDenied"}])
    store = S3BlobStore("processflow-assets", client=client)

    with pytest.raises(StorageCleanupFailure):
        store.remove(["uploads/images/a.png", "uploads/images/b.png"])


def test_s3_store_wraps_client_errors():
    store = S3BlobStore("processflow-assets", client=DummyS3Client(fail=True))

    with pytest.raises(StorageCleanupFailure):
        store.remove(["uploads/images/a.png"])
    with pytest.raises(StorageCleanupFailure):
        store.copy("uploads/images/a.png", "uploads/images/b.png")


def test_s3_store_copies_within_bucket():
    client = DummyS3Client()
    store = S3BlobStore("processflow-assets", client=client)

    store.copy("/uploads/images/a.png", "uploads/images/123-a.png")

    assert client.copies == [
        ("processflow-assets", "uploads/images/a.png", "processflow-assets", "uploads/images/123-a.png")
    ]


def test_backend_is_selected_by_configuration(monkeypatch, tmp_path):
    monkeypatch.setenv("PROCESSFLOW_STORAGE_ROOT", str(tmp_path))
    monkeypatch.delenv("PROCESSFLOW_BLOB_BACKEND", raising=False)
    assert isinstance(blob_store_module.build_blob_store(), LocalBlobStore)

    monkeypatch.setenv("PROCESSFLOW_BLOB_BACKEND", "S3")
    monkeypatch.setenv("PROCESSFLOW_S3_BUCKET", "processflow-assets")
    store = blob_store_module.build_blob_store()
    assert isinstance(store, S3BlobStore)
    assert store.bucket == "processflow-assets"

    monkeypatch.setenv("PROCESSFLOW_S3_BUCKET", "")
    with pytest.raises(BlobStoreNotConfigured):
        blob_store_module.build_blob_store()

    monkeypatch.setenv("PROCESSFLOW_BLOB_BACKEND", "ftp")
    with pytest.raises(BlobStoreNotConfigured):
        blob_store_module.build_blob_store()
