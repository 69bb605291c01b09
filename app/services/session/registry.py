"""In-memory session registry with idle eviction."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from app.services.session.models import (
    ALLOWED_TRANSITIONS,
    Session,
    SessionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

EvictionHook = Callable[[Session], Awaitable[None]]


class SessionRegistry:
    """Authoritative map from session id to Session.

    All mutations are expected to happen on the event loop thread, so no
    locking is done here. Eviction only drops the registry entry; closing the
    upstream channel is left to ``on_evict``.
    """

    def __init__(
        self,
        idle_timeout_seconds: int = 30 * 60,
        sweep_interval_seconds: int = 60,
        on_evict: Optional[EvictionHook] = None,
    ):
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self.sweep_interval = sweep_interval_seconds
        self.on_evict = on_evict
        self._sessions: Dict[str, Session] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def create(self, session: Session) -> Session:
        """Insert a new session."""
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already exists")
        self._sessions[session.id] = session
        logger.info(
            f"[REGISTRY] Session created - SessionId: {session.id}, "
            f"UserId: {session.user_id or 'anonymous'}"
        )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Get a session by id."""
        return self._sessions.get(session_id)

    def update_last_activity(self, session_id: str) -> bool:
        """Refresh a session's activity timestamp."""
        session = self._sessions.get(session_id)
        if not session:
            return False
        session.last_activity = utcnow()
        return True

    def update_status(self, session_id: str, status: SessionStatus) -> bool:
        """Move a session to a new status if the transition is allowed."""
        session = self._sessions.get(session_id)
        if not session:
            return False
        if session.status == status:
            return True
        if status not in ALLOWED_TRANSITIONS[session.status]:
            logger.warning(
                f"[REGISTRY] Rejected status transition {session.status} -> {status} "
                f"- SessionId: {session_id}"
            )
            return False
        logger.info(f"[REGISTRY] Status {session.status} -> {status} - SessionId: {session_id}")
        session.status = status
        session.last_activity = utcnow()
        return True

    def remove(self, session_id: str) -> bool:
        """Remove a session. Returns whether an entry existed."""
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"[REGISTRY] Session removed - SessionId: {session_id}")
        return removed

    def list_by_user(self, user_id: str) -> List[Session]:
        """Sessions belonging to a user."""
        return [session for session in self._sessions.values() if session.user_id == user_id]

    def all(self) -> List[Session]:
        """All registered sessions."""
        return list(self._sessions.values())

    @property
    def active_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def sweep(self, now: Optional[datetime] = None) -> List[Session]:
        """Evict sessions idle for longer than the timeout."""
        cutoff = (now or utcnow()) - self.idle_timeout
        expired = [s for s in self._sessions.values() if s.last_activity < cutoff]

        for session in expired:
            self.remove(session.id)
            logger.info(f"[REGISTRY] Evicted idle session - SessionId: {session.id}")
            if self.on_evict is not None:
                try:
                    await self.on_evict(session)
                except Exception as e:
                    logger.error(
                        f"[REGISTRY] Eviction hook failed - SessionId: {session.id}, "
                        f"Error: {type(e).__name__}: {str(e)}",
                        exc_info=True,
                    )

        if expired:
            logger.info(f"[REGISTRY] {len(expired)} idle session(s) evicted")
        return expired

    def start(self) -> None:
        """Start the periodic idle sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._run_sweeps())

    async def stop(self) -> None:
        """Stop the periodic idle sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        """Whether the periodic sweep is active."""
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _run_sweeps(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"[REGISTRY] Sweep failed - Error: {type(e).__name__}: {str(e)}", exc_info=True)
