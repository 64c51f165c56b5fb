import os
import logging
from typing import List, Optional, Dict, Any
from datetime import datetime

import anyio
from fastapi import FastAPI, HTTPException, Header, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from bson import ObjectId

from database import Subscription, database_status
from identity import IdentityProvider
from session import Session
from schemas import FoodCategory
import chats
import listings
import profiles
import reservations

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="FoodShare API", description="Share surplus food with people nearby")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

identity = IdentityProvider()

# seconds a live stream waits for a change before checking the connection again
STREAM_POLL_SECONDS = 1.0


# ------------------ Utilities ------------------

def serialize_id(value):
    if isinstance(value, ObjectId):
        return str(value)
    return value


def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_id(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


def serialize_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid auth scheme")
    return token


def get_session(authorization: Optional[str] = Header(None)):
    token = bearer_token(authorization)
    with Session(identity, token) as session:
        if session.current_user is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        yield session


def current_user(session: Session = Depends(get_session)) -> Dict[str, Any]:
    return session.current_user


# ------------------ Models ------------------

class RegisterUserRequest(BaseModel):
    name: str
    email: str
    password: str = Field(..., min_length=6)
    address: Optional[str] = None
    phone_number: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None


class CreateFoodItemRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    quantity: Optional[str] = None
    expiry_date: datetime
    category: FoodCategory = "other"
    dietary_info: List[str] = Field(default_factory=list)
    location: Optional[str] = None


class UpdateFoodItemRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[str] = None
    expiry_date: Optional[datetime] = None
    category: Optional[FoodCategory] = None
    dietary_info: Optional[List[str]] = None
    location: Optional[str] = None


class SendMessageRequest(BaseModel):
    text: str


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


# ------------------ Root & Health ------------------

@app.get("/")
def read_root():
    return {"message": "FoodShare API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        status = database_status()
        if status["connected"]:
            response["database"] = "✅ Connected & Working"
            response["database_name"] = status["name"]
            response["connection_status"] = "Connected"
            response["collections"] = status["collections"]
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"

    return response


# ------------------ Auth ------------------

@app.post("/api/auth/register", status_code=201)
def register_user(req: RegisterUserRequest):
    try:
        token, credential = identity.sign_up(req.email, req.password)
        identity.update_display_name(token, req.name)
        profile = profiles.create_profile(
            credential["uid"], req.name, credential["email"], req.address or "", req.phone_number or ""
        )
        return {"token": token, "user": {"id": credential["uid"], **serialize_doc(profile)}}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating user: {e}")
        raise HTTPException(status_code=500, detail="Failed to create account. Please try again.")


@app.post("/api/auth/login")
def login(req: LoginRequest):
    try:
        token, credential = identity.sign_in(req.email, req.password)
        return {"token": token, "user": credential}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error signing in: {e}")
        raise HTTPException(status_code=500, detail="Failed to sign in. Please try again.")


@app.post("/api/auth/logout")
def logout(session: Session = Depends(get_session)):
    session.logout()
    return {"success": True}


@app.get("/api/auth/me")
def me(session: Session = Depends(get_session)):
    return serialize_doc(session.current_user)


@app.delete("/api/auth/me")
def delete_account(session: Session = Depends(get_session)):
    try:
        session.delete_user()
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting account: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete account. Please try again.")


# ------------------ Profiles ------------------

@app.get("/api/profile")
def get_own_profile(user: dict = Depends(current_user)):
    return serialize_doc(profiles.get_profile(user["id"]))


@app.put("/api/profile")
def update_own_profile(req: UpdateProfileRequest, session: Session = Depends(get_session)):
    try:
        profile = profiles.update_profile(session.current_user["id"], **req.model_dump())
        if req.name is not None:
            identity.update_display_name(session.token, req.name)
        return serialize_doc(profile)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating profile: {e}")
        raise HTTPException(status_code=500, detail="Failed to update profile. Please try again.")


@app.get("/api/donors/{donor_id}")
def get_donor(donor_id: str):
    return profiles.donor_profile(donor_id)


# ------------------ Food items ------------------

@app.post("/api/food-items", status_code=201)
def create_food_item(req: CreateFoodItemRequest, user: dict = Depends(current_user)):
    try:
        item_id = listings.create_food_item(user, req.model_dump())
        return serialize_doc(listings.get_food_item(item_id))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating food donation: {e}")
        raise HTTPException(status_code=500, detail="Failed to create donation. Please try again.")


@app.get("/api/food-items")
def list_food_items(search: Optional[str] = None, user: dict = Depends(current_user)):
    try:
        return serialize_list(listings.browse_available(user, search))
    except Exception as e:
        logger.error(f"Error fetching food items: {e}")
        raise HTTPException(status_code=500, detail="Failed to load food items. Please try again.")


@app.get("/api/food-items/{item_id}")
def get_food_item(item_id: str, user: dict = Depends(current_user)):
    return serialize_doc(listings.get_food_item(item_id))


@app.patch("/api/food-items/{item_id}")
def update_food_item(item_id: str, req: UpdateFoodItemRequest, user: dict = Depends(current_user)):
    try:
        return serialize_doc(listings.update_food_item(item_id, user, req.model_dump()))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating food item {item_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update donation. Please try again.")


@app.post("/api/food-items/{item_id}/reserve", status_code=201)
def reserve_food_item(item_id: str, user: dict = Depends(current_user)):
    try:
        return reservations.reserve_food_item(item_id, user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error reserving food: {e}")
        raise HTTPException(status_code=500, detail="Failed to reserve food. Please try again.")


@app.get("/api/dashboard")
def get_dashboard(user: dict = Depends(current_user)):
    try:
        data = listings.dashboard(user)
        return {
            "donations": serialize_list(data["donations"]),
            "activities": serialize_list(data["activities"]),
            "stats": data["stats"],
        }
    except Exception as e:
        logger.error(f"Error fetching dashboard data: {e}")
        raise HTTPException(status_code=500, detail="Failed to load dashboard data. Please try refreshing the page.")


# ------------------ Chat ------------------

@app.get("/api/chats")
def list_chats(user: dict = Depends(current_user)):
    return serialize_list(chats.list_chats(user))


@app.delete("/api/chats/{chat_id}")
def delete_chat(chat_id: str, user: dict = Depends(current_user)):
    try:
        chats.delete_chat(chat_id, user)
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting chat: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete chat. Please try again.")


@app.post("/api/chats/{chat_id}/received")
def mark_received(chat_id: str, user: dict = Depends(current_user)):
    try:
        return serialize_doc(chats.mark_received(chat_id, user))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error marking chat as received: {e}")
        raise HTTPException(status_code=500, detail="Failed to mark food as received. Please try again.")


@app.post("/api/chats/{chat_id}/rating")
def rate_donor(chat_id: str, req: RatingRequest, user: dict = Depends(current_user)):
    try:
        result = chats.submit_rating(chat_id, user, req.rating, req.comment)
        return {"average_rating": result["average_rating"], "chat": serialize_doc(result["chat"])}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error submitting rating: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit rating. Please try again.")


@app.get("/api/chats/{chat_id}/messages")
def get_messages(chat_id: str, user: dict = Depends(current_user)):
    chats.get_chat_for(chat_id, user)
    return serialize_list(chats.list_messages(chat_id))


@app.post("/api/chats/{chat_id}/messages", status_code=201)
def send_message(chat_id: str, req: SendMessageRequest, user: dict = Depends(current_user)):
    try:
        msg_id = chats.send_message(chat_id, user, req.text)
        return {"id": msg_id, "chat_id": chat_id, "text": req.text.strip()}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error sending message: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message. Please try again.")


# ------------------ Live streams ------------------

async def _cancel_on_disconnect(websocket: WebSocket, cancel_scope: anyio.CancelScope):
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            cancel_scope.cancel()
            return


def stream_payload(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # send_json does not encode nested datetimes such as last_message.timestamp
    return jsonable_encoder(serialize_list(docs))


async def _send_snapshots(websocket: WebSocket, subscription: Subscription, cancel_scope: anyio.CancelScope):
    try:
        await websocket.send_json(stream_payload(await run_in_threadpool(subscription.snapshot)))
        while True:
            docs = await run_in_threadpool(subscription.next_snapshot, STREAM_POLL_SECONDS)
            if docs is not None:
                await websocket.send_json(stream_payload(docs))
    except WebSocketDisconnect:
        cancel_scope.cancel()
    except Exception as e:
        logger.error(f"Error streaming {subscription.collection_name}: {e}")
        await websocket.close(code=1011)
        cancel_scope.cancel()


async def stream_snapshots(websocket: WebSocket, subscription: Subscription):
    """Send the current list, then the full list again after every change, until the client leaves."""
    with subscription:
        async with anyio.create_task_group() as tg:
            tg.start_soon(_cancel_on_disconnect, websocket, tg.cancel_scope)
            tg.start_soon(_send_snapshots, websocket, subscription, tg.cancel_scope)


def websocket_user(token: Optional[str]) -> Optional[Dict[str, Any]]:
    with Session(identity, token) as session:
        return session.current_user


@app.websocket("/api/chats/ws")
async def chats_stream(websocket: WebSocket, token: Optional[str] = Query(None)):
    user = await run_in_threadpool(websocket_user, token)
    if user is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    await stream_snapshots(websocket, chats.chats_subscription(user))
    logger.info(f"Chat list stream closed for {user['id']}")


@app.websocket("/api/chats/{chat_id}/messages/ws")
async def messages_stream(websocket: WebSocket, chat_id: str, token: Optional[str] = Query(None)):
    user = await run_in_threadpool(websocket_user, token)
    if user is None:
        await websocket.close(code=1008)
        return
    try:
        await run_in_threadpool(chats.get_chat_for, chat_id, user)
    except HTTPException:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    await stream_snapshots(websocket, chats.messages_subscription(chat_id))
    logger.info(f"Transcript stream closed for chat {chat_id}")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
