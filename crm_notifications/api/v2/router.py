from fastapi import APIRouter
from crm_notifications.api.v2 import notifications, websocket

api_router = APIRouter()

api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(websocket.router, prefix="/notifications", tags=["websocket"])
