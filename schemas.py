"""
Database Schemas for cars2customer

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name (Admin -> "admin", CarBooking -> "carbooking").
Field names are camelCase because they are also the wire format the frontend reads.

User documents ("user") are written field by field by the OTP flow in auth.py:
email, passwordHash, uniqueId, otp, otpExpiry, isVerified and favorites, a list
of Car snapshots taken when each car was saved.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, EmailStr, model_validator


class Admin(BaseModel):
    email: EmailStr
    passwordHash: str = Field(..., description="BCrypt hash of the password")
    uniqueId: str = Field(..., description="Opaque admin identifier, doubles as bearer credential")
    isTopAdmin: bool = False
    createdAt: Optional[datetime] = None


class Feature(BaseModel):
    icon: Optional[str] = None
    label: Optional[str] = None


class TechnicalSpecification(BaseModel):
    label: Optional[str] = None
    value: Optional[str] = None


class Car(BaseModel):
    carId: str = Field(..., min_length=1, description="Business key, unique across the catalog")
    brand: str
    model: str
    year: str
    price: str
    paragraph: str = Field(..., description="Listing description")
    kmDriven: str
    fuelType: str
    transmission: str
    condition: str
    location: str
    images: List[str] = Field(default_factory=list)
    features: List[Feature] = Field(default_factory=list)
    technicalSpecifications: List[TechnicalSpecification] = Field(default_factory=list)


class CarUpdate(BaseModel):
    """Partial car edit; only fields present in the request are written, and none of them may be null."""
    carId: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    price: Optional[str] = None
    paragraph: Optional[str] = None
    kmDriven: Optional[str] = None
    fuelType: Optional[str] = None
    transmission: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    images: Optional[List[str]] = None
    features: Optional[List[Feature]] = None
    technicalSpecifications: Optional[List[TechnicalSpecification]] = None

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = sorted(name for name in self.model_fields_set if getattr(self, name) is None)
        if nulls:
            raise ValueError(f"Fields cannot be null: {', '.join(nulls)}")
        return self


class CarBooking(BaseModel):
    username: str = Field(..., min_length=1)
    phoneNumber: str = Field(..., min_length=1)
    contactId: str = Field(..., min_length=1)
    carName: str = Field(..., min_length=1)
    status: str = "pending"
    currentTime: Optional[datetime] = None
