import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from dependencies import get_activity_log, get_store, get_thread_coordinator
from domain.forum import ThreadCreate, ThreadCreatedResponse, ThreadSummary
from services.activity_log import GUEST_USER_ID, ActivityAction, ActivityLog
from services.relational_store import RelationalStore, StoreError
from services.thread_coordinator import (
    ThreadCreationCoordinator, ThreadCreationFailed, ThreadCreationPhase,
)

logger = logging.getLogger('uvicorn.error')

router = APIRouter(
    prefix="/api/threads",
    tags=["threads"]
)


@router.get("", response_model=List[ThreadSummary])
async def list_threads(
    request: Request,
    store: RelationalStore = Depends(get_store),
    activity_log: ActivityLog = Depends(get_activity_log),
):
    client_ip = request.client.host if request.client else "Unknown"
    activity_log.dispatch(GUEST_USER_ID, ActivityAction.GET_THREADS_REQUEST, {"ip": client_ip})

    try:
        rows = await store.select(
            "threads",
            order_by="created_at",
            descending=True,
            expand={"categories": ("name",), "users": ("username",)},
        )
    except StoreError as e:
        logger.error(f"Error fetching threads: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to fetch threads from database.")
    return [ThreadSummary(**row) for row in rows]


@router.post("", response_model=ThreadCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_thread(
    thread_in: ThreadCreate,
    coordinator: ThreadCreationCoordinator = Depends(get_thread_coordinator),
):
    try:
        created = await coordinator.create_thread(
            title=thread_in.title,
            content=thread_in.content,
            user_id=thread_in.user_id,
            category_id=thread_in.category_id,
        )
    except ThreadCreationFailed as e:
        if e.phase == ThreadCreationPhase.THREAD:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to create thread.", "details": e.details},
            )
        raise HTTPException(
            status_code=500,
            detail={
                "error": "Failed to create original post.",
                "details": e.details,
                "compensated": e.compensated,
            },
        )
    return ThreadCreatedResponse(
        message="Thread and original post created successfully",
        threadId=created.thread_id,
    )
