"""
Database Schemas for the food-sharing marketplace

Each Pydantic model represents one MongoDB collection. Collection names are
listed in the constants below; messages are keyed by ``chat_id`` instead of
living in a per-chat subcollection.
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, Field
from datetime import datetime

USERS = "users"
FOOD_ITEMS = "foodItems"
CHATS = "chats"
MESSAGES = "messages"
ACTIVITIES = "activities"
RESERVATIONS = "reservations"
CREDENTIALS = "credentials"
AUTH_SESSIONS = "authSessions"

SYSTEM_SENDER = "system"

FoodCategory = Literal["prepared", "packaged", "fresh", "canned", "frozen", "other"]
FoodStatus = Literal["available", "reserved", "collected"]
ReservationStatus = Literal["pending", "collected", "canceled"]
ChatStatus = Literal["pending", "received", "completed"]


class Location(BaseModel):
    address: str = Field("", description="Free-text address")


class RatingComment(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", description="Optional review text")
    user_id: str = Field(..., description="Who left the rating")
    user_name: str = Field("")
    created_at: datetime


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address")
    location: Location = Field(default_factory=Location)
    phone_number: str = Field("", description="Contact number")
    created_at: datetime
    ratings: List[int] = Field(default_factory=list)
    rating_comments: List[RatingComment] = Field(default_factory=list)
    average_rating: Optional[float] = Field(None, description="Absent until the first rating")


class Fooditem(BaseModel):
    title: str = Field(..., description="Short title, e.g. 'Bread'")
    description: str = Field("")
    quantity: str = Field("", description="Free text, e.g. '3 loaves'")
    expiry_date: datetime
    category: FoodCategory = Field("other")
    dietary_info: List[str] = Field(default_factory=list, description="vegetarian | vegan | gluten-free ...")
    image_url: str = Field("")
    donor_id: str = Field(..., description="Owner user id")
    donor_name: str = Field("")
    status: FoodStatus = Field("available")
    created_at: datetime
    updated_at: datetime
    reserved_by: Optional[str] = None
    reserved_at: Optional[datetime] = None
    location: str = Field("", description="Pickup address")


class Reservation(BaseModel):
    food_item_id: str
    food_item_title: str
    user_id: str = Field(..., description="Recipient")
    user_name: str = Field("")
    donor_id: str
    donor_name: str = Field("")
    status: ReservationStatus = Field("pending")
    created_at: datetime
    updated_at: datetime


class LastMessage(BaseModel):
    text: str
    timestamp: datetime


class Chat(BaseModel):
    food_item_id: str
    food_item_title: str
    donor_id: str
    donor_name: str = Field("")
    receiver_id: str
    receiver_name: str = Field("")
    participants: dict = Field(..., description="{donor_id: True, receiver_id: True}, used as a membership index")
    status: ChatStatus = Field("pending")
    is_rated: bool = Field(False)
    last_message: Optional[LastMessage] = None
    created_at: datetime


class Message(BaseModel):
    chat_id: str = Field(...)
    text: str = Field(...)
    sender_id: str = Field(..., description="User id or 'system'")
    sender_name: str = Field("")
    timestamp: datetime


class Activity(BaseModel):
    type: Literal["donation", "received"]
    user_id: str
    description: Optional[str] = None
    user_name: Optional[str] = None
    target_user_id: Optional[str] = None
    target_user_name: Optional[str] = None
    food_item_title: Optional[str] = None
    timestamp: datetime
