import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from database import create_document, get_document, get_documents, update_document
from schemas import ACTIVITIES, FOOD_ITEMS, USERS, Activity, Fooditem

logger = logging.getLogger(__name__)

# Uploads are not wired up; every listing gets a stock photo for its category.
CATEGORY_IMAGES = {
    "prepared": "https://images.pexels.com/photos/1640774/pexels-photo-1640774.jpeg",
    "fresh": "https://images.pexels.com/photos/1508666/pexels-photo-1508666.jpeg",
    "packaged": "https://images.pexels.com/photos/4033325/pexels-photo-4033325.jpeg",
    "canned": "https://images.pexels.com/photos/4033312/pexels-photo-4033312.jpeg",
    "frozen": "https://images.pexels.com/photos/128402/pexels-photo-128402.jpeg",
}
DEFAULT_IMAGE = CATEGORY_IMAGES["prepared"]

EDITABLE_FIELDS = ("title", "description", "quantity", "expiry_date", "category", "dietary_info", "location")


def image_for_category(category: Optional[str]) -> str:
    return CATEGORY_IMAGES.get(category or "", DEFAULT_IMAGE)


def create_food_item(current_user: Dict[str, Any], data: Dict[str, Any]) -> str:
    now = datetime.now(timezone.utc)
    item = Fooditem(
        title=data["title"],
        description=data.get("description") or "",
        quantity=data.get("quantity") or "",
        expiry_date=data["expiry_date"],
        category=data.get("category") or "other",
        dietary_info=data.get("dietary_info") or [],
        image_url=image_for_category(data.get("category")),
        donor_id=current_user["id"],
        donor_name=current_user.get("name", ""),
        status="available",
        created_at=now,
        updated_at=now,
        location=data.get("location") or "",
    )
    item_id = create_document(FOOD_ITEMS, item)
    logger.info(f"Donation created with ID: {item_id}")

    create_document(ACTIVITIES, Activity(
        type="donation",
        user_id=current_user["id"],
        description=f'Donated "{item.title}"',
        timestamp=now,
    ))
    return item_id


def get_food_item(item_id: str) -> Dict[str, Any]:
    item = get_document(FOOD_ITEMS, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Food item not found")
    return item


def update_food_item(item_id: str, current_user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    item = get_food_item(item_id)
    if item.get("donor_id") != current_user["id"]:
        raise HTTPException(status_code=403, detail="Only the donor can edit this listing")
    update = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if "category" in update:
        update["image_url"] = image_for_category(update["category"])
    update["updated_at"] = datetime.now(timezone.utc)
    update_document(FOOD_ITEMS, item_id, update)
    return get_food_item(item_id)


def _matches(item: Dict[str, Any], needle: str) -> bool:
    return any(needle in (item.get(field) or "").lower() for field in ("title", "description", "category"))


def browse_available(current_user: Dict[str, Any], search: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Available listings from other donors, each joined with its donor's rating.

    The rating is a separate read per item. Search is a case-insensitive
    substring match over title, description and category.
    """
    items = get_documents(FOOD_ITEMS, {"status": "available"})
    enriched = []
    for item in items:
        donor = get_document(USERS, item.get("donor_id", "")) if item.get("donor_id") else None
        item["donor_rating"] = (donor or {}).get("average_rating") or 0
        enriched.append(item)

    enriched = [i for i in enriched if i.get("donor_id") != current_user["id"]]
    if search:
        needle = search.lower()
        enriched = [i for i in enriched if _matches(i, needle)]
    return enriched


def dashboard(current_user: Dict[str, Any]) -> Dict[str, Any]:
    uid = current_user["id"]
    donations = get_documents(FOOD_ITEMS, {"donor_id": uid}, sort=[("created_at", -1)])
    activities = get_documents(ACTIVITIES, {"user_id": uid}, sort=[("timestamp", -1)])
    return {
        "donations": donations,
        "activities": activities,
        "stats": {
            "items_shared": len(donations),
            "items_reserved": sum(1 for d in donations if d.get("status") != "available"),
        },
    }
