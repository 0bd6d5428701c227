"""Local filesystem storage backend."""

import pytest

from app.core.exceptions import DomainValidationError, NotFoundError
from app.services.storage_service import FileStorage, LocalFileStorage, read_upload, safe_filename
from tests.factories import make_upload


@pytest.fixture
def local_storage(tmp_path):
    return LocalFileStorage(root=str(tmp_path))


async def test_upload_stream_delete(local_storage, tmp_path):
    stored = await local_storage.upload_file(b"hello", "results/1", "Jane Doe report.pdf", "application/pdf")

    assert stored["path"] == "results/1/Jane_Doe_report.pdf"
    assert stored["size"] == 5
    assert stored["url"].endswith("/results/1/Jane_Doe_report.pdf")
    assert (tmp_path / "results" / "1" / "Jane_Doe_report.pdf").read_bytes() == b"hello"

    stream = await local_storage.get_file_stream(stored["path"])
    assert b"".join([chunk async for chunk in stream]) == b"hello"

    assert await local_storage.delete_file(stored["path"]) is True
    assert await local_storage.delete_file(stored["path"]) is False


async def test_missing_file(local_storage):
    with pytest.raises(NotFoundError):
        await local_storage.get_file_stream("results/none.pdf")


async def test_path_traversal_rejected(local_storage):
    with pytest.raises(DomainValidationError):
        await local_storage.delete_file("../outside.txt")


def test_safe_filename():
    assert safe_filename("  a/b c.pdf ") == "a_b_c.pdf"
    assert safe_filename("///") == "file"


async def test_read_upload_limits():
    assert await read_upload(make_upload(content=b"abc"), max_size=10) == b"abc"
    with pytest.raises(DomainValidationError):
        await read_upload(make_upload(content=b""))
    with pytest.raises(DomainValidationError):
        await read_upload(make_upload(content=b"x" * 11), max_size=10)
    with pytest.raises(DomainValidationError):
        await read_upload(None)


def test_backend_must_implement_every_operation():
    class UploadOnly(FileStorage):
        async def upload_file(self, data, folder, filename, content_type=None):
            return {}

    with pytest.raises(TypeError):
        UploadOnly()
