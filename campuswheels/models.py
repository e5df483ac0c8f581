from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestModel(BaseModel):
    # Unknown fields in a request body are rejected
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# Email verification Models
class EmailRequest(RequestModel):
    email: str = Field(..., min_length=3, max_length=100)

class OTPVerify(RequestModel):
    email: str = Field(..., min_length=3, max_length=100)
    otp: str = Field(..., min_length=1, max_length=6)

# Auth Models
class UserSignup(RequestModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8, max_length=128)
    phone_number: Optional[str] = Field(None, max_length=20)
    gender: Optional[str] = Field(None, pattern="^(male|female|other|prefer_not_to_say)$")
    bio: Optional[str] = Field(None, max_length=1000)

class UserLogin(RequestModel):
    email: str
    password: str

class UserProfileUpdate(RequestModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    phone_number: Optional[str] = Field(None, max_length=20)
    gender: Optional[str] = Field(None, pattern="^(male|female|other|prefer_not_to_say)$")
    bio: Optional[str] = Field(None, max_length=1000)
    profile_picture: Optional[str] = Field(None, max_length=255)

# Ride Models
class VehicleInfo(RequestModel):
    make: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=30)
    plate_number: Optional[str] = Field(None, max_length=20)

class RideCreate(RequestModel):
    start_location: str = Field(..., min_length=1, max_length=255)
    end_location: str = Field(..., min_length=1, max_length=255)
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    ride_date_time: datetime
    total_seats: int = Field(..., ge=1, le=10)
    price_per_seat: float = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list, max_length=20)
    vehicle_info: Optional[VehicleInfo] = None
    notes: Optional[str] = Field(None, max_length=1000)

# Rating Models
class RatingCreate(RequestModel):
    ratee_id: str
    ride_id: str
    stars: int  # range checked by the rating recorder
    comment: Optional[str] = Field(None, max_length=500)

# Complaint Models
class ComplaintCreate(RequestModel):
    accused_id: str
    ride_id: Optional[str] = None
    category: str = Field(..., pattern="^(harassment|safety|fraud|other)$")
    description: str = Field(..., min_length=10, max_length=2000)

class ComplaintUpdate(RequestModel):
    status: str = Field(..., pattern="^(pending|investigating|resolved|dismissed)$")
    admin_notes: Optional[str] = Field(None, max_length=1000)

# SOS Models
class SOSCreate(RequestModel):
    ride_id: str
    location: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    message: Optional[str] = Field(None, max_length=1000)

class SOSResolve(RequestModel):
    status: str = Field(..., pattern="^(resolved|false_alarm)$")
    notes: Optional[str] = Field(None, max_length=1000)

# Admin Models
class BanRequest(RequestModel):
    reason: Optional[str] = Field(None, max_length=500)
