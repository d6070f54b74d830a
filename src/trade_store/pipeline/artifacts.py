"""Write-once artifact storage for a single pipeline run."""
import logging
import threading
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Union

from .errors import ArtifactWriteError

logger = logging.getLogger(__name__)

FileContent = Union[str, bytes]


class ArtifactStore:
    """Holds the artifacts of one run.

    Artifacts are declared empty, populated exactly once by their producer and
    handed to consumers as read-only mappings of file name to bytes.
    """

    def __init__(self, declared: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._producers: Dict[str, Optional[str]] = {name: None for name in declared}
        self._files: Dict[str, Mapping[str, bytes]] = {}

    def declare(self, name: str) -> None:
        with self._lock:
            self._producers.setdefault(name, None)

    def write(self, name: str, files: Mapping[str, FileContent], producer: str) -> None:
        with self._lock:
            if name not in self._producers:
                raise ArtifactWriteError(f"Artifact '{name}' was never declared")
            if name in self._files:
                raise ArtifactWriteError(
                    f"Artifact '{name}' was already populated by '{self._producers[name]}'"
                )
            encoded = {
                path: content.encode("utf-8") if isinstance(content, str) else bytes(content)
                for path, content in files.items()
            }
            self._files[name] = MappingProxyType(encoded)
            self._producers[name] = producer
        logger.debug(f"Artifact '{name}' populated by '{producer}' ({len(encoded)} files)")

    def read(self, name: str) -> Mapping[str, bytes]:
        with self._lock:
            if name not in self._files:
                raise KeyError(f"Artifact '{name}' has not been populated")
            return self._files[name]

    def is_populated(self, name: str) -> bool:
        with self._lock:
            return name in self._files

    def producer_of(self, name: str) -> Optional[str]:
        with self._lock:
            return self._producers.get(name)

    def names(self) -> list:
        with self._lock:
            return sorted(self._producers)

    def discard(self) -> None:
        """Drop every artifact at the end of the run."""
        with self._lock:
            self._files.clear()
            for name in self._producers:
                self._producers[name] = None
