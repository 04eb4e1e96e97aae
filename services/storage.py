import uuid
from pathlib import Path

from core.config import Settings, settings
from core.errors import NotFoundError


class LocalStorage:
    """
    Filesystem object store. Keys look like "<tenant>/<uuid><ext>".
    """

    def __init__(self, root: str | None = None, config: Settings = settings) -> None:
        self.root = Path(root or config.STORAGE_ROOT).resolve()

    def put(self, tenant_id: str, filename: str, data: bytes) -> str:
        ext = Path(filename or "").suffix.lower()
        key = f"{tenant_id}/{uuid.uuid4().hex}{ext}"

        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key

    def get(self, tenant_id: str, key: str) -> bytes:
        if not key.startswith(f"{tenant_id}/"):
            raise NotFoundError(f"object {key} not found")

        path = (self.root / key).resolve()
        if self.root not in path.parents or not path.is_file():
            raise NotFoundError(f"object {key} not found")
        return path.read_bytes()

    def delete(self, tenant_id: str, key: str) -> None:
        if not key.startswith(f"{tenant_id}/"):
            return
        path = (self.root / key).resolve()
        if self.root in path.parents:
            path.unlink(missing_ok=True)
