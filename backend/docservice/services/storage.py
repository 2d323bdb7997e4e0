from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class StorageService:
    """
    Local filesystem blob store for HR document files.

    Retention only ever removes blobs; storage keys are relative paths
    under ``base_path`` written by the upload side.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path).resolve()
        self._ensure_base_path()

    def _ensure_base_path(self):
        """Create base storage directory if it doesn't exist"""
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized at: {self.base_path}")

    def _full_path(self, storage_path: str) -> Path:
        """Resolve a storage key, refusing keys that escape the base path"""
        full_path = (self.base_path / storage_path).resolve()
        if full_path != self.base_path and self.base_path not in full_path.parents:
            raise ValueError(f"Storage path escapes storage root: {storage_path}")
        return full_path

    def delete(self, storage_path: str) -> bool:
        """
        Delete a stored file.

        Returns False when the file was already gone; any other OS error
        propagates to the caller.
        """
        full_path = self._full_path(storage_path)
        try:
            full_path.unlink()
        except FileNotFoundError:
            return False

        logger.info(f"Deleted file: {storage_path}", extra={"path": storage_path})
        return True
