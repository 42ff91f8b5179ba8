import logging
import os
import threading
import time
from typing import BinaryIO, Callable, Dict, List, Optional, Set

from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

UPLOAD_CHUNK_SIZE = 256 * 1024
PRODUCT_IMAGE_PREFIX = "products"
DEFAULT_ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class UploadError(Exception):
    pass


class UploadInProgressError(UploadError):
    pass


class ObjectStorage:
    """Objects stored under a local folder and served over HTTP."""

    def __init__(self, root: str, url_builder: Callable[[str], str]):
        self.root = root
        self.url_builder = url_builder
        os.makedirs(root, exist_ok=True)

    def local_path(self, object_path: str) -> str:
        target = safe_join(self.root, object_path)
        if target is None:
            raise UploadError(f"Invalid storage path: {object_path}")
        return target

    def upload_resumable(
        self, object_path: str, stream: BinaryIO, total_bytes: Optional[int] = None
    ) -> "UploadTask":
        return UploadTask(self, object_path, stream, total_bytes)

    def download_url(self, object_path: str) -> str:
        if not os.path.isfile(self.local_path(object_path)):
            raise UploadError(f"Object does not exist: {object_path}")
        return self.url_builder(object_path)


def stream_position(stream: BinaryIO) -> int:
    try:
        return stream.tell()
    except (AttributeError, OSError, ValueError):
        return 0


def measure_stream(stream: BinaryIO) -> Optional[int]:
    try:
        position = stream.tell()
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return size - position


class UploadTask:
    """Chunked write to a partial object, renamed into place when complete.

    Listeners get ``progress(task)`` after every chunk, then exactly one of
    ``error(exc)`` or ``complete(task)``. A task that failed can be run again
    and continues from the bytes already transferred.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        object_path: str,
        stream: BinaryIO,
        total_bytes: Optional[int] = None,
    ):
        self.storage = storage
        self.object_path = object_path
        self.stream = stream
        measured = measure_stream(stream)
        self.total_bytes = total_bytes if total_bytes is not None else measured
        self.bytes_transferred = 0
        self.state = "running"
        self._start_offset = stream_position(stream)
        self._listeners: List[Dict[str, Callable]] = []

    @property
    def progress(self) -> float:
        if self.total_bytes:
            return min(100.0, self.bytes_transferred / self.total_bytes * 100)
        return 100.0 if self.state == "success" else 0.0

    def on(self, progress=None, error=None, complete=None):
        self._listeners.append({"progress": progress, "error": error, "complete": complete})
        return self

    def _emit(self, event: str, payload):
        for listener in list(self._listeners):
            callback = listener.get(event)
            if callback:
                callback(payload)

    def run(self):
        self.state = "running"
        try:
            final_path = self.storage.local_path(self.object_path)
            partial_path = f"{final_path}.part"
            os.makedirs(os.path.dirname(final_path), exist_ok=True)
            if self.bytes_transferred:
                self.stream.seek(self._start_offset + self.bytes_transferred)
            with open(partial_path, "ab") as destination:
                destination.truncate(self.bytes_transferred)
                while True:
                    chunk = self.stream.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    destination.write(chunk)
                    self.bytes_transferred += len(chunk)
                    self._emit("progress", self)
            os.replace(partial_path, final_path)
        except (OSError, ValueError, UploadError) as exc:
            self.state = "error"
            self._emit("error", exc)
            return self

        if self.total_bytes is None:
            self.total_bytes = self.bytes_transferred
        self.state = "success"
        self._emit("complete", self)
        return self

    def discard(self):
        """Drop the partial object of a failed run; the next run starts over."""
        try:
            os.remove(f"{self.storage.local_path(self.object_path)}.part")
        except FileNotFoundError:
            pass
        self.bytes_transferred = 0


class UploadSideChannel:
    """Single in-flight image upload feeding the product form."""

    def __init__(
        self,
        storage: ObjectStorage,
        allowed_extensions: Optional[Set[str]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.allowed_extensions = allowed_extensions or DEFAULT_ALLOWED_EXTENSIONS
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.uploading = False
        self.progress = 0.0
        self.uploaded_url: Optional[str] = None
        self.object_path: Optional[str] = None
        self._in_flight = threading.Lock()

    def state(self) -> Dict:
        return {
            "uploading": self.uploading,
            "progress": round(self.progress, 2),
            "uploadedUrl": self.uploaded_url,
        }

    def build_object_path(self, filename: str) -> str:
        original_filename = secure_filename(filename or "")
        if not original_filename:
            raise UploadError("Please choose a valid file name.")
        extension = os.path.splitext(original_filename)[1].lower().lstrip(".")
        if extension not in self.allowed_extensions:
            raise UploadError(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )
        started_at_ms = int(self.clock() * 1000)
        return f"{PRODUCT_IMAGE_PREFIX}/{started_at_ms}-{original_filename}"

    def upload(
        self,
        filename: str,
        stream: BinaryIO,
        total_bytes: Optional[int] = None,
        on_uploaded: Optional[Callable[[str], None]] = None,
    ) -> str:
        if not self._in_flight.acquire(blocking=False):
            raise UploadInProgressError("Another upload is still in progress.")
        try:
            return self._upload(filename, stream, total_bytes, on_uploaded)
        finally:
            self._in_flight.release()

    def _upload(self, filename, stream, total_bytes, on_uploaded) -> str:
        try:
            object_path = self.build_object_path(filename)
        except UploadError as exc:
            self.logger.warning("Rejected upload of %r: %s", filename, exc)
            raise

        self.uploading = True
        self.progress = 0.0
        self.uploaded_url = None
        self.object_path = object_path

        outcome: Dict = {}
        task = self.storage.upload_resumable(object_path, stream, total_bytes)
        task.on(
            progress=self._on_progress,
            error=lambda exc: outcome.setdefault("error", exc),
            complete=lambda finished: outcome.setdefault("task", finished),
        )
        task.run()

        if "error" in outcome:
            task.discard()
            self._reset()
            self.logger.error("Upload failed for %s: %s", object_path, outcome["error"])
            raise UploadError("We could not store the uploaded image. Please try again.")

        try:
            download_url = self.storage.download_url(object_path)
        except UploadError as exc:
            self._reset()
            self.logger.error("Upload failed for %s: %s", object_path, exc)
            raise

        self.uploaded_url = download_url
        self.progress = 100.0
        self.uploading = False
        if on_uploaded:
            on_uploaded(download_url)
        return download_url

    def _on_progress(self, task: UploadTask):
        self.progress = task.progress

    def _reset(self):
        self.uploading = False
        self.progress = 0.0
        self.object_path = None
