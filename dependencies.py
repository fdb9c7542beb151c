import logging

from fastapi import Depends, HTTPException, Request

from config import Settings
from services.activity_log import ActivityLog
from services.relational_store import RelationalStore
from services.thread_coordinator import ThreadCreationCoordinator

logger = logging.getLogger('uvicorn.error')


async def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_store(request: Request) -> RelationalStore:
    if not hasattr(request.app.state, 'store') or not request.app.state.store:
        logger.error("Relational store not initialized or unavailable.")
        raise HTTPException(status_code=500, detail="Database service unavailable")
    return request.app.state.store


async def get_activity_log(request: Request) -> ActivityLog:
    # A missing log behaves like one that is not ready: writes are skipped.
    return getattr(request.app.state, 'activity_log', None) or ActivityLog(None)


async def get_thread_coordinator(
    store: RelationalStore = Depends(get_store),
    activity_log: ActivityLog = Depends(get_activity_log),
) -> ThreadCreationCoordinator:
    return ThreadCreationCoordinator(store, activity_log)
