"""
ComplyTrack - File Storage Service

Opaque store for audit documents and evidence files.

Files are written under the local upload root using the layout
bucket/folder/unique_id_filename, e.g.

- audit-documents/audit-<id>/...
- audit-evidences/audit-<id>/finding-evidence/...
- audit-evidences/audit-<id>/inspection-evidence/...
- corrective-action-evidence/audit-<id>/action-<id>/...
"""

import uuid
import logging
from pathlib import Path
from typing import Dict, Optional

from app.config import settings

logger = logging.getLogger(__name__)

DOCUMENTS_BUCKET = "audit-documents"
EVIDENCE_BUCKET = "audit-evidences"
ACTION_EVIDENCE_BUCKET = "corrective-action-evidence"


def _safe_segment(value: str) -> str:
    return "".join(c if c.isalnum() or c in ".-_" else "_" for c in value).strip(".") or "file"


class FileStorageService:
    """Local file storage addressed by bucket and folder."""

    def __init__(self, root: Optional[str] = None, public_url: Optional[str] = None):
        self.root = Path(root or settings.storage_local_path)
        self.public_url = (public_url or settings.storage_public_url).rstrip("/")

    def _object_path(self, bucket: str, folder: str, filename: str) -> str:
        parts = [_safe_segment(bucket)]
        parts.extend(_safe_segment(p) for p in folder.split("/") if p)
        parts.append(f"{uuid.uuid4().hex[:12]}_{_safe_segment(filename)}")
        return "/".join(parts)

    async def upload(
        self,
        content: bytes,
        filename: str,
        bucket: str,
        folder: str,
    ) -> Dict[str, str]:
        """
        Store a file.

        Returns:
            Dict with the public url and the storage path used for deletion
        """
        path = self._object_path(bucket, folder, filename)
        file_path = self.root / path
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "wb") as f:
            f.write(content)

        logger.info(f"Stored {len(content)} bytes at {path}")
        return {"url": f"{self.public_url}/{path}", "path": path}

    async def delete(self, path: str) -> bool:
        file_path = (self.root / path).resolve()
        if self.root.resolve() not in file_path.parents:
            logger.warning(f"Refusing to delete outside the storage root: {path}")
            return False
        if file_path.exists():
            file_path.unlink()
            return True
        return False
