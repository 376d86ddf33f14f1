from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Set, Tuple
from fastapi import UploadFile
from sqlalchemy.orm import Session
from tasktrack.core.errors import PayloadTooLarge
from tasktrack.models.task import Task
from tasktrack.models.user import User
from tasktrack.storage.local_storage import AttachmentStorage, storage


@dataclass
class IncomingFile:
    """Upload bytes received and size-checked, but not yet written to disk."""
    content: bytes
    content_type: Optional[str]
    size: int


class AttachmentService:
    """Receives uploads from requests and tracks which stored files are still referenced"""

    def __init__(self, attachment_storage: AttachmentStorage = storage):
        self.storage = attachment_storage

    async def read_upload(self, upload: Optional[UploadFile]) -> Optional[IncomingFile]:
        """
        Read a multipart file part into memory.

        Browsers send an empty part with no filename when no file was picked;
        that counts as "no upload". Reading stops one byte past the size
        ceiling so oversized bodies are rejected without buffering them whole.
        """
        if upload is None or not upload.filename:
            return None

        limit = self.storage.max_size
        if upload.size is not None and upload.size > limit:
            raise PayloadTooLarge(f"File too large. Max size is {limit // (1024 * 1024)}MB.")

        content = await upload.read(limit + 1)
        return IncomingFile(content=content, content_type=upload.content_type, size=len(content))

    def persist(self, incoming: Optional[IncomingFile], bucket: str) -> Optional[str]:
        if incoming is None:
            return None
        return self.storage.store(incoming.content, incoming.content_type, incoming.size, bucket)

    def discard(self, reference: Optional[str]) -> None:
        self.storage.delete(reference)

    @staticmethod
    def get_referenced(db: Session) -> Set[str]:
        """All attachment references currently stored on a task or user record"""
        referenced = set()
        for (image,) in db.query(Task.image).filter(Task.image.isnot(None)).all():
            referenced.add(image)
        for (avatar,) in db.query(User.avatar).filter(User.avatar.isnot(None)).all():
            referenced.add(avatar)
        return referenced

    def get_orphaned(self, db: Session, grace: timedelta) -> List[Tuple[str, Path]]:
        """
        Find stored files no record points at.

        Files modified within the grace period are skipped because their
        owning request may not have committed yet.
        """
        referenced = self.get_referenced(db)
        cutoff = datetime.now(timezone.utc) - grace
        orphaned = []
        for reference, path in self.storage.iter_files():
            if reference in referenced:
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            if modified < cutoff:
                orphaned.append((reference, path))
        return orphaned


attachment_service = AttachmentService()
