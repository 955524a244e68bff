"""Persistence for the signed-in session between application launches."""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from microfinder.models.session import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Keeps at most one session for the running application."""

    @abstractmethod
    def load(self) -> Session | None:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    def save(self, session: Session) -> None:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    def clear(self) -> None:  # pragma: no cover - interface stub
        ...


@dataclass(slots=True)
class MemorySessionStore(SessionStore):
    """Session storage that lives only as long as the process."""

    session: Session | None = None

    def load(self) -> Session | None:
        return self.session

    def save(self, session: Session) -> None:
        self.session = session

    def clear(self) -> None:
        self.session = None


@dataclass(slots=True)
class FileSessionStore(SessionStore):
    """Persist the session as JSON, falling back to memory when the disk refuses."""

    path: Path
    _fallback: MemorySessionStore = field(default_factory=MemorySessionStore, repr=False)

    @classmethod
    def from_path(cls, path: str) -> "FileSessionStore":
        return cls(path=Path(path).expanduser().resolve())

    def load(self) -> Session | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._fallback.load()
        except OSError:
            logger.warning("Falling back to memory session storage; cannot read %s", self.path, exc_info=True)
            return self._fallback.load()
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable session file %s", self.path)
            return None

    def save(self, session: Session) -> None:
        self._fallback.save(session)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Falling back to memory session storage; cannot write %s", self.path, exc_info=True)
            return
        logger.debug("Persisted session to %s", self.path)

    def clear(self) -> None:
        self._fallback.clear()
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove session file %s", self.path, exc_info=True)
