from __future__ import annotations

from fastapi import APIRouter, Depends

from . import notifications
from .api_deps import get_current_actor
from .api_schemas import CountOut, NotificationOut
from .users import Actor

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


# Notifiche (sempre dell'utente autenticato)

@router.get("", response_model=list[NotificationOut])
def list_notifications(actor: Actor = Depends(get_current_actor)):
    return notifications.list_for_user(actor.id)


@router.get("/unread", response_model=list[NotificationOut])
def list_unread(actor: Actor = Depends(get_current_actor)):
    return notifications.list_unread(actor.id)


@router.get("/count-unread", response_model=CountOut)
def count_unread(actor: Actor = Depends(get_current_actor)) -> CountOut:
    return CountOut(count=notifications.count_unread(actor.id))


@router.put("/mark-all-read", response_model=CountOut)
def mark_all_read(actor: Actor = Depends(get_current_actor)) -> CountOut:
    return CountOut(count=notifications.mark_all_read(actor.id))


@router.get("/{notification_id}", response_model=NotificationOut)
def get_notification(notification_id: int, actor: Actor = Depends(get_current_actor)):
    return notifications.get_for_user(notification_id, actor.id)


@router.put("/{notification_id}/mark-read", response_model=NotificationOut)
def mark_read(notification_id: int, actor: Actor = Depends(get_current_actor)):
    return notifications.mark_read(notification_id, actor.id)
