import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from google.cloud import firestore
from google.cloud.firestore import AsyncClient

logger = logging.getLogger('uvicorn.error')

GUEST_USER_ID = 0


class ActivityAction(str, Enum):
    GET_THREADS_REQUEST = "GET_THREADS_REQUEST"
    CREATE_THREAD_SUCCESS = "CREATE_THREAD_SUCCESS"
    REGISTER_SUCCESS = "REGISTER_SUCCESS"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"


class ActivityLog:
    """
    Best-effort activity trail in a Firestore collection.

    Writes never raise: a log that is not ready is skipped, and a failed or
    slow write is reported on the operator logger and dropped.
    """

    def __init__(self, client: Optional[AsyncClient], collection: str = "activity_logs", timeout: float = 10.0):
        self.client = client
        self.collection = collection
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def connect(cls, project: Optional[str] = None, collection: str = "activity_logs",
                timeout: float = 10.0) -> "ActivityLog":
        try:
            client = firestore.AsyncClient(project=project)
            logger.info("Firestore Async client initialized for activity logs.")
        except Exception as e:
            logger.error(f"Failed to initialize Firestore Async client, activity logs disabled: {e}")
            client = None
        return cls(client, collection=collection, timeout=timeout)

    @property
    def ready(self) -> bool:
        return self.client is not None

    async def record(self, user_id: int, action: ActivityAction, details: Optional[Dict[str, Any]] = None) -> None:
        if not self.ready:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc),
            "userId": user_id,
            "action": ActivityAction(action).value,
            "details": details or {},
        }
        try:
            await asyncio.wait_for(self.client.collection(self.collection).add(entry), timeout=self.timeout)
        except Exception as e:
            logger.error(f"Failed to record activity log {entry['action']} for user {user_id}: {e}")

    def dispatch(self, user_id: int, action: ActivityAction, details: Optional[Dict[str, Any]] = None) -> None:
        """Schedule ``record`` without waiting for it."""
        if not self.ready:
            return
        task = asyncio.create_task(self.record(user_id, action, details))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.client is not None:
            try:
                await self.client.close()
                logger.info("Firestore Async client closed.")
            except Exception as e:
                logger.error(f"Error closing Firestore client: {e}")
            self.client = None
