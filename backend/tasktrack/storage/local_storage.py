import logging
import os
import secrets
import tempfile
import time
from pathlib import Path
from typing import Iterator, Optional
from tasktrack.core.config import settings
from tasktrack.core.errors import PayloadTooLarge, UnsupportedMediaType

logger = logging.getLogger(__name__)

AVATAR_BUCKET = "avatar"
TASK_IMAGE_BUCKET = "uploads"
BUCKETS = (AVATAR_BUCKET, TASK_IMAGE_BUCKET)

# Extension is derived from the declared type, never from the client filename
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}


class AttachmentStorage:
    """
    Stores uploaded images on local disk under <root>/<bucket>/<name>.

    References handed back to callers are "/<bucket>/<name>", which is also
    the URL path the files are served from.
    """

    def __init__(self, root: Optional[str] = None, max_size: Optional[int] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.max_size = max_size if max_size is not None else settings.MAX_UPLOAD_SIZE

    def bucket_dir(self, bucket: str) -> Path:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown attachment bucket: {bucket}")
        return self.root / bucket

    def ensure_directories(self) -> None:
        """Create bucket directories; raises OSError if the root is not writable."""
        for bucket in BUCKETS:
            path = self.bucket_dir(bucket)
            path.mkdir(parents=True, exist_ok=True)
            if not os.access(path, os.W_OK):
                raise PermissionError(f"Attachment directory is not writable: {path}")

    def validate(self, mime_type: Optional[str], size: int) -> str:
        """Check type then size; returns the file extension to use."""
        extension = ALLOWED_MIME_TYPES.get((mime_type or "").lower())
        if extension is None:
            raise UnsupportedMediaType()
        if size > self.max_size:
            raise PayloadTooLarge(
                f"File too large. Max size is {self.max_size // (1024 * 1024)}MB."
            )
        return extension

    @staticmethod
    def generate_filename(extension: str) -> str:
        # Millisecond timestamp plus random suffix - concurrent uploads never collide
        return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{extension}"

    def store(self, content: bytes, mime_type: Optional[str], size: int, bucket: str) -> str:
        """Validate and persist an upload, returning its reference path."""
        extension = self.validate(mime_type, size)
        directory = self.bucket_dir(bucket)
        directory.mkdir(parents=True, exist_ok=True)
        filename = self.generate_filename(extension)

        # Write to a temp file in the same directory, then rename into place
        # A failure at any point leaves no partial file behind
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".incoming-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, directory / filename)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        return f"/{bucket}/{filename}"

    def resolve(self, reference: Optional[str]) -> Optional[Path]:
        """Map a reference back to a path, or None for external URLs and unknown buckets."""
        if not reference or not reference.startswith("/"):
            return None
        parts = reference.lstrip("/").split("/")
        if len(parts) != 2 or parts[0] not in BUCKETS or parts[1] in ("", ".", ".."):
            return None
        return self.root / parts[0] / parts[1]

    def delete(self, reference: Optional[str]) -> bool:
        """Delete a stored file; errors are logged, the orphan sweep retries later"""
        file_path = self.resolve(reference)
        if file_path is None or not file_path.exists():
            return False
        try:
            file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error deleting attachment {reference}: {str(e)}")
            return False
        return True

    def exists(self, reference: Optional[str]) -> bool:
        file_path = self.resolve(reference)
        return file_path is not None and file_path.exists()

    def iter_files(self) -> Iterator[tuple[str, Path]]:
        """Yield (reference, path) for every stored attachment."""
        for bucket in BUCKETS:
            directory = self.bucket_dir(bucket)
            if not directory.exists():
                continue
            for path in directory.iterdir():
                if path.is_file() and not path.name.startswith("."):
                    yield f"/{bucket}/{path.name}", path


storage = AttachmentStorage()
