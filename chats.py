"""
Chat lifecycle and transcript.

Status only moves forward: pending -> received (recipient picked the food up)
-> completed (recipient rated the donor).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import HTTPException

from database import (
    Subscription,
    create_document,
    delete_document,
    delete_documents,
    get_document,
    get_documents,
    update_document,
)
from ratings import fold_rating
from schemas import ACTIVITIES, CHATS, MESSAGES, USERS, Activity, Message

logger = logging.getLogger(__name__)

TRANSCRIPT_ORDER = [("timestamp", 1), ("_id", 1)]


def participants_filter(user_id: str) -> Dict[str, Any]:
    return {f"participants.{user_id}": True}


def get_chat(chat_id: str) -> Dict[str, Any]:
    chat = get_document(CHATS, chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


def get_chat_for(chat_id: str, current_user: Dict[str, Any]) -> Dict[str, Any]:
    chat = get_chat(chat_id)
    if not (chat.get("participants") or {}).get(current_user["id"]):
        raise HTTPException(status_code=403, detail="Not a participant in this chat")
    return chat


def list_chats(current_user: Dict[str, Any]) -> List[Dict[str, Any]]:
    return get_documents(CHATS, participants_filter(current_user["id"]))


def chats_subscription(current_user: Dict[str, Any]) -> Subscription:
    return Subscription(CHATS, participants_filter(current_user["id"]))


def delete_chat(chat_id: str, current_user: Dict[str, Any]):
    get_chat_for(chat_id, current_user)
    delete_document(CHATS, chat_id)
    removed = delete_documents(MESSAGES, {"chat_id": chat_id})
    logger.info(f"Chat {chat_id} deleted with {removed} messages")


# ---- transcript ----

def list_messages(chat_id: str) -> List[Dict[str, Any]]:
    return get_documents(MESSAGES, {"chat_id": chat_id}, sort=TRANSCRIPT_ORDER)


def messages_subscription(chat_id: str) -> Subscription:
    return Subscription(MESSAGES, {"chat_id": chat_id}, sort=TRANSCRIPT_ORDER)


def send_message(chat_id: str, current_user: Dict[str, Any], text: str) -> str:
    get_chat_for(chat_id, current_user)
    text = (text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message text is required")
    now = datetime.now(timezone.utc)
    message_id = create_document(MESSAGES, Message(
        chat_id=chat_id,
        text=text,
        sender_id=current_user["id"],
        sender_name=current_user.get("name", ""),
        timestamp=now,
    ))
    update_document(CHATS, chat_id, {"last_message": {"text": text, "timestamp": now}})
    return message_id


# ---- status transitions ----

def _require_receiver(chat: Dict[str, Any], current_user: Dict[str, Any]):
    if chat.get("receiver_id") != current_user["id"]:
        raise HTTPException(status_code=403, detail="Only the recipient can do this")


def mark_received(chat_id: str, current_user: Dict[str, Any]) -> Dict[str, Any]:
    chat = get_chat(chat_id)
    _require_receiver(chat, current_user)
    if chat.get("status", "pending") != "pending":
        raise HTTPException(status_code=409, detail=f"Chat is already {chat.get('status')}")

    update_document(CHATS, chat_id, {"status": "received"})
    create_document(ACTIVITIES, Activity(
        type="received",
        user_id=current_user["id"],
        user_name=current_user.get("name", ""),
        target_user_id=chat.get("donor_id"),
        target_user_name=chat.get("donor_name"),
        food_item_title=chat.get("food_item_title"),
        timestamp=datetime.now(timezone.utc),
    ))
    logger.info(f"Chat {chat_id} marked as received")
    return get_chat(chat_id)


def submit_rating(chat_id: str, current_user: Dict[str, Any], rating: int, comment: str = "") -> Dict[str, Any]:
    """
    Rate the donor and close the chat.

    The donor update and the chat update are two separate writes. Submitting
    again for a completed chat adds another rating.
    """
    chat = get_chat(chat_id)
    _require_receiver(chat, current_user)
    if chat.get("status", "pending") == "pending":
        raise HTTPException(status_code=409, detail="Mark the food as received before rating")

    donor_id = chat["donor_id"]
    donor = get_document(USERS, donor_id)
    if not donor:
        raise HTTPException(status_code=404, detail="Donor not found")

    try:
        changes = fold_rating(donor, rating, comment, current_user, datetime.now(timezone.utc))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    update_document(USERS, donor_id, changes)

    update_document(CHATS, chat_id, {"status": "completed", "is_rated": True})
    logger.info(f"Donor {donor_id} rated {rating} via chat {chat_id}")
    return {"average_rating": changes["average_rating"], "chat": get_chat(chat_id)}
