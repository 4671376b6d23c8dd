"""Session store with snapshot isolation and JSON persistence."""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiofiles

from agentd.models.session import Session, SessionStatus


logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0"


class SessionStore:
    """Keeps every conversation's Session and persists it between restarts.

    The runtime mutates a live working copy returned by ``get_or_create``;
    ``save`` publishes a deep-copied snapshot. Readers (``get``, ``peek``,
    listings) only ever see published snapshots, so they never observe a
    partially appended turn.
    """

    def __init__(self, storage_path: Optional[str] = None, processed_event_window: int = 256):
        """Initialize session store.

        Args:
            storage_path: Directory for session JSON files, None keeps sessions in memory only
            processed_event_window: Number of recent event ids remembered per session
        """
        self.storage_path = Path(storage_path).expanduser() if storage_path else None
        self.processed_event_window = processed_event_window

        self._live: Dict[str, Session] = {}
        self._snapshots: Dict[str, Session] = {}
        self._write_locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Create the storage directory and load persisted sessions."""
        if self.storage_path is None:
            logger.info("Session store running without persistence")
            return

        self.storage_path.mkdir(parents=True, exist_ok=True)

        for session_file in sorted(self.storage_path.glob("*.json")):
            session = await self._load_session_file(session_file)
            if session is None:
                continue
            self._live[session.conversation_id] = session
            self._snapshots[session.conversation_id] = session.snapshot()

        logger.info(f"Session store initialized with {len(self._live)} sessions")

    async def get_or_create(self, conversation_id: str, channel: Optional[str] = None) -> Session:
        """Get the live working copy of a session, creating it if needed.

        Only the runtime holding the conversation's admission lock may mutate
        the returned object.
        """
        session = self._live.get(conversation_id)
        if session is None:
            session = Session(conversation_id=conversation_id, channel=channel)
            self._live[conversation_id] = session
            self._snapshots[conversation_id] = session.snapshot()
            logger.info(f"Created session {conversation_id}")
        return session

    async def save(self, session: Session) -> bool:
        """Publish a snapshot of the session and persist it.

        Returns:
            True if the snapshot was published and, when storage is configured,
            written to disk
        """
        conversation_id = session.conversation_id
        self._live[conversation_id] = session
        snapshot = session.snapshot()
        self._snapshots[conversation_id] = snapshot

        if self.storage_path is None:
            return True

        lock = self._write_locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            try:
                await self._save_session_file(snapshot)
                return True
            except OSError as e:
                logger.error(f"Failed to persist session {conversation_id}: {e}")
                return False

    async def get(self, conversation_id: str) -> Optional[Session]:
        """Get a private copy of the latest published snapshot."""
        snapshot = self._snapshots.get(conversation_id)
        return snapshot.snapshot() if snapshot else None

    def peek(self, conversation_id: str) -> Optional[Session]:
        """Latest published snapshot without copying. Callers must not mutate it."""
        return self._snapshots.get(conversation_id)

    async def list_active(self) -> List[Session]:
        """Snapshots of sessions with a loop in flight."""
        return [s.snapshot() for s in self._snapshots.values() if s.is_active]

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List session summaries, most recently active first.

        Args:
            status: Filter by session status
            limit: Maximum number of sessions to return
            offset: Number of sessions to skip

        Returns:
            List of session summaries
        """
        sessions = [
            s for s in self._snapshots.values()
            if status is None or s.status == status
        ]
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return [s.get_summary() for s in sessions[offset:offset + limit]]

    async def delete(self, conversation_id: str) -> bool:
        """Delete a session from memory and storage.

        Returns:
            True if the session existed
        """
        existed = self._live.pop(conversation_id, None) is not None
        self._snapshots.pop(conversation_id, None)
        self._write_locks.pop(conversation_id, None)

        if self.storage_path is not None:
            session_file = self._session_file(conversation_id)
            if session_file.exists():
                session_file.unlink()
                existed = True

        if existed:
            logger.info(f"Deleted session {conversation_id}")
        return existed

    async def shutdown(self) -> None:
        """Flush published snapshots to storage."""
        if self.storage_path is None:
            return

        failed = 0
        for snapshot in list(self._snapshots.values()):
            try:
                await self._save_session_file(snapshot)
            except OSError as e:
                failed += 1
                logger.error(f"Failed to flush session {snapshot.conversation_id}: {e}")

        logger.info(f"Session store shut down ({len(self._snapshots) - failed} sessions flushed)")

    def get_statistics(self) -> Dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with session counts by status and storage details
        """
        by_status = {status.value: 0 for status in SessionStatus}
        for snapshot in self._snapshots.values():
            by_status[snapshot.status.value] += 1

        return {
            "total_sessions": len(self._snapshots),
            "active_sessions": by_status[SessionStatus.RUNNING.value] + by_status[SessionStatus.AWAITING_APPROVAL.value],
            "sessions_by_status": by_status,
            "persistent": self.storage_path is not None,
            "storage_path": str(self.storage_path) if self.storage_path else None
        }

    def _session_file(self, conversation_id: str) -> Path:
        # Conversation ids come from channels and may contain path separators
        return self.storage_path / f"{quote(conversation_id, safe='')}.json"

    async def _save_session_file(self, session: Session) -> None:
        session_file = self._session_file(session.conversation_id)
        temp_file = session_file.with_suffix(".json.tmp")

        data = {
            "session": session.model_dump(mode="json"),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "version": STORAGE_VERSION
        }

        async with aiofiles.open(temp_file, "w") as f:
            await f.write(json.dumps(data, indent=2, default=str))
        os.replace(temp_file, session_file)

    async def _load_session_file(self, session_file: Path) -> Optional[Session]:
        try:
            async with aiofiles.open(session_file, "r") as f:
                content = await f.read()
            data = json.loads(content)

            session_data = data.get("session")
            if session_data:
                return Session(**session_data)
            logger.warning(f"Session file {session_file} has no session payload")

        except (OSError, ValueError) as e:
            logger.error(f"Failed to load session file {session_file}: {e}")

        return None
