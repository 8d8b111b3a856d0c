"""Narrow interfaces to the storage and notification collaborators.

The pipeline only ever reads document bytes by ID (intake stores them
first) and emits fire-and-forget notifications. Retention, signed URLs
and delivery channels live outside this package.
"""

from pathlib import Path
from typing import Any, Protocol

from src.errors import NotFoundError
from src.utils.logger import get_logger

logger = get_logger(__name__)


class DocumentStorage(Protocol):
    """Source of raw document bytes; intake writes, the pipeline reads."""

    def save(self, document_id: str, content: bytes) -> Any: ...

    def fetch_document_bytes(self, document_id: str) -> bytes: ...


class Notifier(Protocol):
    """Outbound notification sink."""

    def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class FileSystemStorage:
    """Document storage backed by a local directory.

    Each document is stored as a single file named after its ID.

    Args:
        root: Directory holding the document files.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def save(self, document_id: str, content: bytes) -> Path:
        """Write document bytes under ``document_id``.

        Args:
            document_id: Opaque document identifier.
            content: Raw document bytes.

        Returns:
            Path of the written file.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / document_id
        path.write_bytes(content)
        return path

    def fetch_document_bytes(self, document_id: str) -> bytes:
        """Read the bytes stored for ``document_id``.

        Raises:
            NotFoundError: If nothing is stored under that ID.
        """
        path = self.root / document_id
        if not path.is_file():
            raise NotFoundError(f"No stored content for document {document_id}")
        return path.read_bytes()


class LogNotifier:
    """Notifier that writes each event to the application log."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s: %s", event, payload)


def notify_safely(notifier: Notifier | None, event: str, payload: dict[str, Any]) -> None:
    """Send a notification without letting delivery failures reach the caller.

    Args:
        notifier: Target notifier, or ``None`` to skip.
        event: Event name, e.g. ``review_required``.
        payload: Event payload.
    """
    if notifier is None:
        return
    try:
        notifier.notify(event, payload)
    except Exception as exc:
        logger.warning("Notification %s not delivered: %s", event, exc)
