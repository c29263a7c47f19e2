"""Append-only JSONL session store."""

from __future__ import annotations

import json
import os
import threading
import uuid
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from codeagent.errors import SessionIOError, SessionNotFoundError
from codeagent.session.models import Conversation, SessionInfo, Turn, find_unresolved_calls, utcnow
from codeagent.utils.helpers import sanitize_session_key

SESSION_FILE_SUFFIX = ".jsonl"


class SessionStore:
    """
    Durable record of every turn, one JSONL file per session.

    The first line of a session file is a metadata header, every following
    line is one Turn in append order. Appending is the only mutation, and
    ``updated_at`` is derived from the last turn. A partial trailing line left
    by a crash is skipped on load and cut off by the next append.
    """

    def __init__(self, sessions_dir: Path) -> None:
        self.sessions_dir = sessions_dir.expanduser()
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{sanitize_session_key(session_id)}{SESSION_FILE_SUFFIX}"

    def _lock(self, session_id: str) -> threading.Lock:
        with self._guard:
            if session_id not in self._locks:
                self._locks[session_id] = threading.Lock()
            return self._locks[session_id]

    def exists(self, session_id: str) -> bool:
        return self._session_path(session_id).exists()

    def create(
        self,
        title: str = "New Coding Session",
        directory: str = ".",
        system_prompt: str | None = None,
    ) -> str:
        """Create an empty session and return its id."""
        session_id = str(uuid.uuid4())
        header = {
            "_type": "metadata",
            "id": session_id,
            "title": title,
            "directory": directory,
            "system_prompt": system_prompt,
            "created_at": utcnow().isoformat(),
        }
        path = self._session_path(session_id)
        try:
            with self._lock(session_id), open(path, "x", encoding="utf-8") as fp:
                fp.write(json.dumps(header, ensure_ascii=False) + "\n")
        except OSError as e:
            raise SessionIOError(f"Failed to create session {session_id}: {e}") from e
        logger.debug("session.create id={} path={}", session_id, path)
        return session_id

    def append(self, session_id: str, turn: Turn) -> None:
        """Append one turn. The line is flushed before returning."""
        path = self._session_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        line = json.dumps({"_type": "turn", **turn.model_dump(mode="json")}, ensure_ascii=False)
        try:
            with self._lock(session_id):
                self._drop_torn_tail(session_id, path)
                with open(path, "a", encoding="utf-8") as fp:
                    fp.write(line + "\n")
                    fp.flush()
        except OSError as e:
            raise SessionIOError(f"Failed to append to session {session_id}: {e}") from e

    def _drop_torn_tail(self, session_id: str, path: Path) -> None:
        """Cut a partial last line left by a crash so the next append starts on a fresh line."""
        with open(path, "rb+") as fp:
            size = fp.seek(0, os.SEEK_END)
            if size == 0:
                return
            fp.seek(size - 1)
            if fp.read(1) == b"\n":
                return
            fp.seek(0)
            data = fp.read()
            keep = data.rfind(b"\n") + 1
            try:
                json.loads(data[keep:])
            except ValueError:
                fp.truncate(keep)
                logger.warning("session.append id={} dropped {} bytes of torn trailing line", session_id, size - keep)
            else:
                # Complete record that only lost its terminator.
                fp.write(b"\n")

    def load(self, session_id: str) -> Conversation:
        """Rebuild the conversation from its persisted turns."""
        _, turns = self._read(session_id)
        unresolved = find_unresolved_calls(turns)
        if unresolved:
            logger.warning(
                "session.load id={} unresolved_calls={}",
                session_id,
                [call.id for call in unresolved],
            )
        return Conversation(session_id=session_id, turns=turns, unresolved_calls=unresolved)

    def info(self, session_id: str) -> SessionInfo:
        header, turns = self._read(session_id)
        created_at = header.get("created_at") or utcnow().isoformat()
        return SessionInfo(
            id=session_id,
            title=header.get("title") or "New Coding Session",
            directory=header.get("directory") or ".",
            system_prompt=header.get("system_prompt"),
            created_at=created_at,
            updated_at=turns[-1].timestamp if turns else created_at,
            turn_count=len(turns),
        )

    def list_sessions(self) -> list[SessionInfo]:
        """All sessions, most recently updated first."""
        sessions: list[SessionInfo] = []
        for path in self.sessions_dir.glob(f"*{SESSION_FILE_SUFFIX}"):
            try:
                sessions.append(self.info(path.stem))
            except SessionIOError as e:
                logger.warning("session.list skipped={} error={}", path.name, e)
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    def _read(self, session_id: str) -> tuple[dict[str, Any], list[Turn]]:
        path = self._session_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        try:
            with self._lock(session_id):
                lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise SessionIOError(f"Failed to read session {session_id}: {e}") from e

        header: dict[str, Any] = {}
        turns: list[Turn] = []
        last_index = len(lines) - 1
        for index, raw_line in enumerate(lines):
            line = raw_line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                if entry.get("_type") == "metadata":
                    header = entry
                    continue
                entry.pop("_type", None)
                turns.append(Turn.model_validate(entry))
            except (json.JSONDecodeError, ValidationError, AttributeError) as e:
                if index == last_index:
                    # Torn write from an interrupted process.
                    logger.warning("session.load id={} skipped partial trailing line", session_id)
                    continue
                raise SessionIOError(f"Corrupt session {session_id} at line {index + 1}: {e}") from e
        return header, turns
