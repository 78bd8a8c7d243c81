# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import asyncio
import re
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

import anyio
from loguru import logger

from coreason_rharness.artifacts import remove_document
from coreason_rharness.config import HarnessConfig
from coreason_rharness.models import ArtifactPaths, Schema, SnapshotBinding
from coreason_rharness.runner import unique_stamp

SNAPSHOT_NAME = "workspace.RData"
_SESSION_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def validate_session_id(session_id: str) -> str:
    """Checks that a session id is safe to use as a single path component.

    Raises:
        ValueError: If the id is empty or contains anything but letters,
            digits, '_', '.' and '-'.
    """
    if not session_id:
        raise ValueError("Session ID is required")
    if not _SESSION_ID.match(session_id) or session_id in (".", ".."):
        raise ValueError(f"Invalid session ID: {session_id!r}")
    return session_id


@dataclass
class WorkspaceSession:
    session_id: str
    last_accessed: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    documents: list[Path] = field(default_factory=list)
    schemas: dict[str, Schema] = field(default_factory=dict)


class WorkspaceManager:
    """Manages per-session interpreter snapshots.

    Each session owns a transient snapshot under the work directory, which
    every composed script loads at start and saves at the end, and a
    durable copy that survives process restarts. All work on a session's
    snapshot happens under that session's lock.
    """

    def __init__(self, config: HarnessConfig):
        """Initializes the WorkspaceManager.

        Args:
            config: Harness configuration providing the work and durable directories.
        """
        self.config = config
        self.sessions: dict[str, WorkspaceSession] = {}
        self._creation_lock = asyncio.Lock()
        self._reaper_task: asyncio.Task[None] | None = None

    def session_dir(self, session_id: str) -> Path:
        return self.config.sessions_dir / validate_session_id(session_id)

    def snapshot_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / SNAPSHOT_NAME

    def durable_path(self, session_id: str) -> Path:
        return self.config.durable_dir / f"{validate_session_id(session_id)}.RData"

    async def get_or_create_session(self, session_id: str) -> WorkspaceSession:
        """Retrieve existing session or create a new one.

        Updates the last_accessed timestamp for the session.
        This method is safe against concurrent creation for the same session ID.

        Args:
            session_id: The unique identifier for the session.

        Returns:
            WorkspaceSession: The session record.

        Raises:
            ValueError: If session_id is empty or malformed.
        """
        validate_session_id(session_id)

        # Optimistic check
        if session_id in self.sessions:
            session = self.sessions[session_id]
            session.last_accessed = time.time()
            return session

        async with self._creation_lock:
            # Double-check inside lock
            if session_id in self.sessions:
                session = self.sessions[session_id]
                session.last_accessed = time.time()
                return session

            logger.info(f"Creating workspace session: {session_id}")
            session = WorkspaceSession(session_id=session_id, last_accessed=time.time())
            self.sessions[session_id] = session
            return session

    def binding(self, session_id: str) -> SnapshotBinding:
        """Snapshot paths for the next script. load_from is None until a first save."""
        snapshot = self.snapshot_path(session_id)
        snapshot.parent.mkdir(parents=True, exist_ok=True)
        return SnapshotBinding(load_from=snapshot if snapshot.exists() else None, save_to=snapshot)

    def allocate_artifacts(self, session_id: str) -> ArtifactPaths:
        stamp = unique_stamp()
        plot_dir = self.session_dir(session_id)
        document_dir = self.config.documents_dir / session_id
        plot_dir.mkdir(parents=True, exist_ok=True)
        document_dir.mkdir(parents=True, exist_ok=True)
        return ArtifactPaths(
            plot_path=plot_dir / f"plot_{stamp}.{self.config.plot_device}",
            document_path=document_dir / f"widget_{stamp}.html",
        )

    def discard_documents(self, session: WorkspaceSession) -> None:
        """Deletes the documents produced by the session's previous execution."""
        for path in session.documents:
            try:
                remove_document(path)
            except OSError as e:
                logger.warning(f"Failed to remove document {path}: {e}")
        session.documents.clear()

    async def reset(self, session_id: str) -> None:
        """Drops all state of a session. Safe to call repeatedly.

        A session that is not tracked in memory is cleared on disk without
        creating an entry for it.

        Args:
            session_id: The session to clear.
        """
        validate_session_id(session_id)
        session = self.sessions.get(session_id)
        if session is None:
            async with self._creation_lock:
                session = self.sessions.get(session_id)
                if session is None:
                    self._remove_snapshots(session_id)
                    logger.info(f"Workspace cleared for session {session_id}")
                    return

        async with session.lock:
            self._remove_snapshots(session_id)
            self.discard_documents(session)
            session.schemas.clear()
            session.last_accessed = time.time()
        logger.info(f"Workspace cleared for session {session_id}")

    def _remove_snapshots(self, session_id: str) -> None:
        for path in (self.snapshot_path(session_id), self.durable_path(session_id)):
            path.unlink(missing_ok=True)

    def reap_idle(self, now: float | None = None) -> list[str]:
        """Forgets sessions idle for longer than idle_timeout.

        Snapshots stay on disk, so a later request picks up where the session
        left off. Documents of reaped sessions are deleted. Sessions with work
        in progress are never reaped.

        Returns:
            list[str]: IDs of the sessions that were released.
        """
        now = time.time() if now is None else now
        expired_ids = [
            sid
            for sid, session in self.sessions.items()
            if now - session.last_accessed > self.config.idle_timeout and not session.lock.locked()
        ]
        for sid in expired_ids:
            session = self.sessions.pop(sid)
            logger.info(f"Session {sid} idle. Releasing its in-memory state.")
            self.discard_documents(session)
        return expired_ids

    def start_reaper(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                self.reap_idle()
        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def stop_reaper(self) -> None:
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
        self._reaper_task = None

    async def persist_on_shutdown(self) -> int:
        """Copy every transient snapshot to durable storage.

        Failures are logged per session and never raised.

        Returns:
            int: Number of snapshots persisted.
        """
        sessions_dir = self.config.sessions_dir
        if not sessions_dir.is_dir():
            return 0

        persisted = 0
        for session_dir in sorted(sessions_dir.iterdir()):
            snapshot = session_dir / SNAPSHOT_NAME
            if not snapshot.is_file():
                continue
            try:
                target = self.durable_path(session_dir.name)
                target.parent.mkdir(parents=True, exist_ok=True)
                await anyio.to_thread.run_sync(shutil.copy2, snapshot, target)
                persisted += 1
            except (OSError, ValueError) as e:
                logger.error(f"Failed to persist workspace for session {session_dir.name}: {e}")

        logger.info(f"Persisted {persisted} workspace(s) to {self.config.durable_dir}")
        return persisted

    async def restore_on_startup(self) -> int:
        """Copy durable snapshots back into place and purge stale documents.

        A transient snapshot at least as new as its durable copy, left by a
        run that ended without persisting, is kept. Failures are logged and
        never raised.

        Returns:
            int: Number of snapshots restored.
        """
        documents_dir = self.config.documents_dir
        if documents_dir.exists():
            try:
                await anyio.to_thread.run_sync(shutil.rmtree, documents_dir)
                logger.info(f"Purged stale documents in {documents_dir}")
            except OSError as e:
                logger.error(f"Failed to purge stale documents: {e}")

        durable_dir = self.config.durable_dir
        if not durable_dir.is_dir():
            return 0

        restored = 0
        for durable in sorted(durable_dir.glob("*.RData")):
            try:
                target = self.snapshot_path(durable.stem)
                if target.is_file() and target.stat().st_mtime >= durable.stat().st_mtime:
                    logger.info(f"Keeping newer transient snapshot for session {durable.stem}")
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                await anyio.to_thread.run_sync(shutil.copy2, durable, target)
                restored += 1
            except ValueError:
                logger.warning(f"Skipping durable snapshot with invalid session ID: {durable.name}")
            except OSError as e:
                logger.error(f"Failed to restore workspace from {durable}: {e}")

        logger.info(f"Restored {restored} workspace(s) from {durable_dir}")
        return restored
