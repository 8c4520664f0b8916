import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from auth import (
    admin_login,
    authorize,
    create_access_token,
    decode_access_token,
    ensure_not_protected,
    get_password_hash,
    register_admin,
    request_otp,
    request_password_reset,
    reset_password,
    user_login,
    verify_and_register,
)
from database import create_document, ensure_indexes, get_db, get_documents, serialize_doc, utcnow
from errors import AlreadyFavorited, AlreadyRegistered, Internal, NotFound, ValidationFailed
from mailer import Mailer, get_mailer
from schemas import Car, CarBooking, CarUpdate

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="cars2customer API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": ValidationFailed.detail, "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(PyMongoError)
async def store_exception_handler(request: Request, exc: PyMongoError):
    logger.error("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=Internal.status_code, content={"detail": Internal.detail})


# Request bodies
class AdminCredentials(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AdminClaim(BaseModel):
    uniqueId: Optional[str] = None


class AdminUpdateIn(AdminClaim):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)


class EmailIn(BaseModel):
    email: EmailStr


class UserRegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    otp: str


class ResetPasswordIn(BaseModel):
    email: EmailStr
    otp: str
    newPassword: str = Field(..., min_length=1)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class CarCreateIn(AdminClaim):
    car: Car


class CarUpdateIn(AdminClaim):
    updateData: CarUpdate


class FavoriteIn(BaseModel):
    uniqueId: str = Field(..., min_length=1)
    carId: str = Field(..., min_length=1)


class BookingStatusIn(AdminClaim):
    status: str = Field(..., min_length=1)


# Admin guard
def admin_token_claim(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Optional[str]:
    if credentials is None:
        return None
    return decode_access_token(credentials.credentials)


def require_admin(db: Database, payload: Optional[AdminClaim], token_claim: Optional[str]) -> Dict[str, Any]:
    claimed = token_claim or (payload.uniqueId if payload else None)
    return authorize(db, claimed)


def public_admin(admin: Dict[str, Any]) -> Dict[str, Any]:
    admin = serialize_doc(admin)
    admin.pop("passwordHash", None)
    return admin


def group_cars_by_brand(cars: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for car in cars:
        grouped.setdefault(car.get("brand"), []).append(car)
    return grouped


def parse_object_id(value: str, detail: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFound(detail)
    return ObjectId(value)


# Routes
@app.get("/")
def root():
    return {"message": "cars2customer API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    if database.db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    else:
        response["database"] = "⚠️  Available but not initialized"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# Admin endpoints
@app.post("/admin/register", status_code=status.HTTP_201_CREATED)
def register_admin_route(payload: AdminCredentials, db: Database = Depends(get_db)):
    admin = register_admin(db, payload.email, payload.password)
    return {"message": "Admin registered successfully!", "uniqueId": admin["uniqueId"]}


@app.post("/admin/register/top", status_code=status.HTTP_201_CREATED)
def register_top_admin_route(payload: AdminCredentials, db: Database = Depends(get_db)):
    admin = register_admin(db, payload.email, payload.password, is_top_admin=True)
    return {"message": "Top admin registered successfully!", "uniqueId": admin["uniqueId"]}


@app.post("/admin/login")
def admin_login_route(payload: AdminCredentials, db: Database = Depends(get_db)):
    admin = admin_login(db, payload.email, payload.password)
    access_token = create_access_token({"sub": admin["uniqueId"]})
    return {
        "message": "Login successful!",
        "uniqueId": admin["uniqueId"],
        "role": "admin",
        "access_token": access_token,
        "token_type": "bearer",
    }


@app.get("/admin/all")
def list_admins(uniqueId: Optional[str] = Query(None), db: Database = Depends(get_db),
                token_claim: Optional[str] = Depends(admin_token_claim)):
    # uniqueIds are bearer credentials, so the listing is admin-only
    authorize(db, token_claim or uniqueId)
    admins = get_documents(db, "admin", {"isTopAdmin": {"$ne": True}})
    return [public_admin(a) for a in admins]


@app.put("/admin/{admin_id}")
def update_admin(admin_id: str, payload: AdminUpdateIn, db: Database = Depends(get_db),
                 token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    ensure_not_protected(db, admin_id, "edit")

    update_data: Dict[str, Any] = {}
    if payload.email:
        update_data["email"] = payload.email
    if payload.password:
        update_data["passwordHash"] = get_password_hash(payload.password)
    if not update_data:
        raise ValidationFailed("Nothing to update")

    try:
        updated = db["admin"].find_one_and_update(
            {"uniqueId": admin_id, "isTopAdmin": {"$ne": True}},
            {"$set": {**update_data, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise AlreadyRegistered("Email already registered")
    if not updated:
        raise NotFound("Admin not found")

    logger.info("Admin %s updated", admin_id)
    return {"message": "Admin updated successfully!"}


@app.delete("/admin/{admin_id}")
def delete_admin(admin_id: str, payload: Optional[AdminClaim] = Body(None), db: Database = Depends(get_db),
                 token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    ensure_not_protected(db, admin_id, "delete")

    result = db["admin"].delete_one({"uniqueId": admin_id, "isTopAdmin": {"$ne": True}})
    if result.deleted_count == 0:
        raise NotFound("Admin not found")

    logger.info("Admin %s deleted", admin_id)
    return {"message": "Admin deleted successfully!"}


# User auth endpoints
@app.post("/user/request-otp")
def request_otp_route(payload: EmailIn, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    request_otp(db, mailer, payload.email)
    return {"message": "OTP sent successfully!"}


@app.post("/user/register", status_code=status.HTTP_201_CREATED)
def register_user_route(payload: UserRegisterIn, db: Database = Depends(get_db)):
    user = verify_and_register(db, payload.email, payload.otp, payload.password)
    return {
        "message": "User registered successfully!",
        "uniqueId": user["uniqueId"],
        "favorites": [serialize_doc(f) for f in user.get("favorites", [])],
    }


@app.post("/user/request-reset")
def request_reset_route(payload: EmailIn, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    request_password_reset(db, mailer, payload.email)
    return {"message": "OTP sent successfully!"}


@app.post("/user/reset-password")
def reset_password_route(payload: ResetPasswordIn, db: Database = Depends(get_db)):
    reset_password(db, payload.email, payload.otp, payload.newPassword)
    return {"message": "Password reset successfully!"}


@app.post("/user/login")
def user_login_route(payload: LoginIn, db: Database = Depends(get_db)):
    user = user_login(db, payload.email, payload.password)
    return {
        "message": "Login successful!",
        "uniqueId": user["uniqueId"],
        "favorites": [serialize_doc(f) for f in user.get("favorites", [])],
    }


# Car catalog endpoints
@app.get("/all-cars")
def list_cars(db: Database = Depends(get_db)):
    cars = [serialize_doc(c) for c in get_documents(db, "car")]
    return {"cars": group_cars_by_brand(cars)}


@app.get("/cars/{car_id}")
def get_car(car_id: str, db: Database = Depends(get_db)):
    car = db["car"].find_one({"carId": car_id})
    if not car:
        raise NotFound("Car not found")
    return {"car": serialize_doc(car)}


@app.post("/cars", status_code=status.HTTP_201_CREATED)
def create_car(payload: CarCreateIn, db: Database = Depends(get_db),
               token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    try:
        car_id = create_document(db, "car", payload.car)
    except DuplicateKeyError:
        raise ValidationFailed("Car with this carId already exists")
    saved = db["car"].find_one({"_id": ObjectId(car_id)})
    return {"message": "Car added successfully!", "car": serialize_doc(saved)}


@app.put("/cars/{car_id}")
def update_car(car_id: str, payload: CarUpdateIn, db: Database = Depends(get_db),
               token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    update_data = payload.updateData.model_dump(exclude_unset=True)
    if not update_data:
        raise ValidationFailed("Nothing to update")

    try:
        updated = db["car"].find_one_and_update(
            {"carId": car_id},
            {"$set": {**update_data, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ValidationFailed("Car with this carId already exists")
    if not updated:
        raise NotFound("Car not found")
    return {"message": "Car updated successfully!", "car": serialize_doc(updated)}


@app.delete("/cars/{car_id}")
def delete_car(car_id: str, payload: Optional[AdminClaim] = Body(None), db: Database = Depends(get_db),
               token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    result = db["car"].delete_one({"carId": car_id})
    if result.deleted_count == 0:
        raise NotFound("Car not found")
    return {"message": "Car deleted successfully!"}


# Favorites endpoints (per-user)
@app.post("/favorites/add")
def add_favorite(payload: FavoriteIn, db: Database = Depends(get_db)):
    user = db["user"].find_one({"uniqueId": payload.uniqueId})
    if not user:
        raise NotFound("User not found")
    car = db["car"].find_one({"carId": payload.carId})
    if not car:
        raise NotFound("Car not found")
    if any(f.get("carId") == payload.carId for f in user.get("favorites", [])):
        raise AlreadyFavorited()

    try:
        snapshot = Car.model_validate(car).model_dump()
    except PydanticValidationError:
        logger.warning("Car %s is stored incomplete, cannot snapshot it", payload.carId)
        raise ValidationFailed("Car record is incomplete")
    updated = db["user"].find_one_and_update(
        {"uniqueId": payload.uniqueId, "favorites.carId": {"$ne": payload.carId}},
        {"$push": {"favorites": snapshot}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise AlreadyFavorited()
    return {"message": "Car added to favorites", "favorites": [serialize_doc(f) for f in updated["favorites"]]}


@app.post("/favorites/remove")
def remove_favorite(payload: FavoriteIn, db: Database = Depends(get_db)):
    if not db["user"].find_one({"uniqueId": payload.uniqueId}):
        raise NotFound("User not found")

    updated = db["user"].find_one_and_update(
        {"uniqueId": payload.uniqueId, "favorites.carId": payload.carId},
        {"$pull": {"favorites": {"carId": payload.carId}}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("Car not found in favorites")
    return {"message": "Car removed from favorites", "favorites": [serialize_doc(f) for f in updated["favorites"]]}


@app.get("/car/favorites/{unique_id}")
def list_favorites(unique_id: str, db: Database = Depends(get_db)):
    user = db["user"].find_one({"uniqueId": unique_id})
    if not user:
        raise NotFound("User not found")
    return {"favorites": [serialize_doc(f) for f in user.get("favorites", [])]}


# Booking endpoints
@app.post("/cars/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(payload: CarBooking, db: Database = Depends(get_db)):
    booking = payload.model_dump()
    booking["currentTime"] = booking.get("currentTime") or utcnow()
    booking_id = create_document(db, "carbooking", booking)
    return serialize_doc(db["carbooking"].find_one({"_id": ObjectId(booking_id)}))


@app.get("/carsBooked/bookings")
def list_bookings(db: Database = Depends(get_db)):
    bookings = db["carbooking"].find().sort("createdAt", DESCENDING)
    return [serialize_doc(b) for b in bookings]


@app.get("/cars/bookings/{booking_id}")
def get_booking(booking_id: str, db: Database = Depends(get_db)):
    booking = db["carbooking"].find_one({"_id": parse_object_id(booking_id, "Booking not found")})
    if not booking:
        raise NotFound("Booking not found")
    return serialize_doc(booking)


@app.put("/carsBooked/bookings/{booking_id}")
def update_booking_status(booking_id: str, payload: BookingStatusIn, db: Database = Depends(get_db),
                          token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    updated = db["carbooking"].find_one_and_update(
        {"_id": parse_object_id(booking_id, "Booking not found")},
        {"$set": {"status": payload.status, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("Booking not found")
    return serialize_doc(updated)


@app.delete("/carsBooked/bookings/{booking_id}")
def delete_booking(booking_id: str, payload: Optional[AdminClaim] = Body(None), db: Database = Depends(get_db),
                   token_claim: Optional[str] = Depends(admin_token_claim)):
    require_admin(db, payload, token_claim)
    result = db["carbooking"].delete_one({"_id": parse_object_id(booking_id, "Booking not found")})
    if result.deleted_count == 0:
        raise NotFound("Booking not found")
    return {"message": "Booking deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
