from datetime import datetime
from typing import Any, Dict, List, Optional


def average(ratings: List[int]) -> Optional[float]:
    if not ratings:
        return None
    return sum(ratings) / len(ratings)


def rating_label(user_doc: Dict[str, Any]) -> str:
    value = user_doc.get("average_rating")
    if value is None:
        return "No ratings yet"
    return f"{value:.1f}"


def fold_rating(donor_doc: Dict[str, Any], rating: int, comment: str, rater: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Fields to $set on the donor after one more rating. Nothing is written here."""
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValueError("Rating must be a whole number from 1 to 5")
    ratings = list(donor_doc.get("ratings") or []) + [rating]
    comments = list(donor_doc.get("rating_comments") or []) + [{
        "rating": rating,
        "comment": comment or "",
        "user_id": rater["id"],
        "user_name": rater.get("name", ""),
        "created_at": now,
    }]
    return {
        "ratings": ratings,
        "rating_comments": comments,
        "average_rating": average(ratings),
    }
