import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from services.activity_log import ActivityAction, ActivityLog
from services.relational_store import RelationalStore, StoreError

logger = logging.getLogger('uvicorn.error')


class ThreadCreationPhase(str, Enum):
    THREAD = "thread"
    POST = "post"


class ThreadCreationFailed(Exception):
    """
    Creating a thread with its original post did not complete.

    ``compensated`` is None when the thread insert itself failed (nothing was
    written). For post failures it tells whether the inserted thread was
    deleted again; when it is False, ``orphan_thread_id`` names the row that
    needs manual cleanup.
    """

    def __init__(self, phase: ThreadCreationPhase, details: str,
                 compensated: Optional[bool] = None, orphan_thread_id: Optional[int] = None):
        super().__init__(f"thread creation failed in {phase.value} phase: {details}")
        self.phase = phase
        self.details = details
        self.compensated = compensated
        self.orphan_thread_id = orphan_thread_id


@dataclass
class ThreadCreated:
    thread_id: int
    post_id: int


class ThreadCreationCoordinator:
    """Creates a thread and its original post so that both exist or neither does."""

    def __init__(self, store: RelationalStore, activity_log: Optional[ActivityLog] = None):
        self.store = store
        self.activity_log = activity_log

    async def create_thread(self, title: str, content: str, user_id: int, category_id: int) -> ThreadCreated:
        try:
            thread = await self.store.insert(
                "threads", {"title": title, "user_id": user_id, "category_id": category_id}
            )
        except StoreError as e:
            logger.error(f"Error creating thread '{title}' for user {user_id}: {e.message}")
            raise ThreadCreationFailed(ThreadCreationPhase.THREAD, e.message) from e

        thread_id = thread["id"]
        try:
            post = await self.store.insert("posts", {
                "content": content,
                "user_id": user_id,
                "thread_id": thread_id,
                "is_original_post": True,
            })
        except StoreError as e:
            logger.error(f"Error creating original post for thread {thread_id}: {e.message}")
            compensated = await asyncio.shield(self._undo_thread(thread_id))
            raise ThreadCreationFailed(
                ThreadCreationPhase.POST,
                e.message,
                compensated=compensated,
                orphan_thread_id=None if compensated else thread_id,
            ) from e
        except BaseException as e:
            # Cancellation included: the thread must not outlive its post.
            logger.error(f"Original post for thread {thread_id} failed unexpectedly ({e!r}), rolling back")
            await asyncio.shield(self._undo_thread(thread_id))
            raise

        logger.info(f"User {user_id} created thread {thread_id} with original post {post['id']}")
        if self.activity_log is not None:
            self.activity_log.dispatch(
                user_id, ActivityAction.CREATE_THREAD_SUCCESS, {"threadId": thread_id, "title": title}
            )
        return ThreadCreated(thread_id=thread_id, post_id=post["id"])

    async def _undo_thread(self, thread_id: int) -> bool:
        try:
            await self.store.delete("threads", {"id": thread_id})
        except Exception as e:
            logger.critical(f"Orphaned thread {thread_id}: compensating delete failed: {e}")
            return False
        logger.warning(f"Rolled back thread {thread_id} after original post insert failed")
        return True
