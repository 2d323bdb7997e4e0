import pytest
from pathlib import Path

from docservice.services.storage import StorageService


SAMPLE_PDF = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


def write_blob(root, storage_path, content=SAMPLE_PDF) -> Path:
    path = Path(root) / storage_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.mark.unit
class TestStorageService:
    """Test storage service functionality"""

    def test_creates_base_directory(self, tmp_path):
        root = tmp_path / "nested" / "storage"

        storage = StorageService(str(root))

        assert root.is_dir()
        assert storage.base_path == root.resolve()

    def test_delete(self, temp_storage):
        storage = StorageService(temp_storage)
        path = write_blob(temp_storage, "2025/01/01/deadbeef/contract.pdf")

        assert storage.delete("2025/01/01/deadbeef/contract.pdf") is True
        assert not path.exists()
        # Parent directories are left in place
        assert path.parent.is_dir()

    def test_delete_leaves_other_files(self, temp_storage):
        storage = StorageService(temp_storage)
        write_blob(temp_storage, "2025/01/01/deadbeef/contract.pdf")
        kept = write_blob(temp_storage, "2025/01/01/deadbeef/payslip.pdf")

        storage.delete("2025/01/01/deadbeef/contract.pdf")

        assert kept.read_bytes() == SAMPLE_PDF

    def test_delete_missing_file_returns_false(self, temp_storage):
        storage = StorageService(temp_storage)

        assert storage.delete("2025/01/01/deadbeef/gone.pdf") is False

    def test_delete_twice(self, temp_storage):
        storage = StorageService(temp_storage)
        write_blob(temp_storage, "records/offer.pdf")

        assert storage.delete("records/offer.pdf") is True
        assert storage.delete("records/offer.pdf") is False

    def test_rejects_paths_outside_root(self, temp_storage):
        storage = StorageService(temp_storage)

        with pytest.raises(ValueError, match="escapes storage root"):
            storage.delete("../../etc/passwd")
        with pytest.raises(ValueError):
            storage.delete("/etc/passwd")

    def test_other_os_errors_propagate(self, temp_storage):
        storage = StorageService(temp_storage)
        Path(temp_storage, "records").mkdir()

        # A directory cannot be unlinked like a file
        with pytest.raises(OSError):
            storage.delete("records")
