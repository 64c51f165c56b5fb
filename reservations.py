"""
Reservation/chat orchestration.

Reserving a listing is five steps run in a fixed order: mark the item reserved,
record the reservation, open a chat, seed it with a system message, and hand
back where the caller should go next. Each step is its own write. A failure
part way through leaves the earlier writes in place.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import HTTPException

from database import create_document, update_document
from listings import get_food_item
from schemas import CHATS, FOOD_ITEMS, MESSAGES, RESERVATIONS, SYSTEM_SENDER, Chat, Message, Reservation

logger = logging.getLogger(__name__)


def reserve_food_item(food_item_id: str, current_user: Dict[str, Any]) -> Dict[str, Any]:
    item = get_food_item(food_item_id)
    if item.get("donor_id") == current_user["id"]:
        raise HTTPException(status_code=400, detail="Cannot reserve your own item")
    # read-then-write; two reservers racing here both succeed and the last write wins
    if item.get("status") != "available":
        raise HTTPException(status_code=409, detail="Item is not available for reservation")

    now = datetime.now(timezone.utc)
    title = item.get("title", "")
    donor_id = item["donor_id"]
    donor_name = item.get("donor_name", "")

    # 1. item
    update_document(FOOD_ITEMS, food_item_id, {
        "status": "reserved",
        "reserved_by": current_user["id"],
        "reserved_at": now,
    })

    # 2. reservation
    reservation_id = create_document(RESERVATIONS, Reservation(
        food_item_id=food_item_id,
        food_item_title=title,
        user_id=current_user["id"],
        user_name=current_user.get("name", ""),
        donor_id=donor_id,
        donor_name=donor_name,
        status="pending",
        created_at=now,
        updated_at=now,
    ))

    # 3. chat
    chat_id = create_document(CHATS, Chat(
        food_item_id=food_item_id,
        food_item_title=title,
        donor_id=donor_id,
        donor_name=donor_name,
        receiver_id=current_user["id"],
        receiver_name=current_user.get("name", ""),
        participants={donor_id: True, current_user["id"]: True},
        status="pending",
        is_rated=False,
        created_at=now,
    ))

    # 4. system message
    create_document(MESSAGES, Message(
        chat_id=chat_id,
        text=f"{current_user.get('name', '')} has reserved {title}",
        sender_id=SYSTEM_SENDER,
        sender_name="System",
        timestamp=now,
    ))

    logger.info(f"Item {food_item_id} reserved by {current_user['id']}, chat {chat_id}")

    # 5. navigation target
    return {
        "food_item_id": food_item_id,
        "reservation_id": reservation_id,
        "chat_id": chat_id,
        "redirect_to": f"/chats?chatId={chat_id}",
    }
