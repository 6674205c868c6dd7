"""
Database Schemas for the Natours API

MongoDB collections are defined below using Pydantic models. Attributes are
snake_case; documents are stored by their camelCase aliases so that the field
names used in query strings (`ratingsAverage[gte]=4.5`) match the stored ones.

We will use these collections:
- tours: tours offered for booking
- users: customers, guides and administrators
- reviews: a user's rating of a tour
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.functional_validators import AfterValidator, PlainValidator

Role = Literal["user", "guide", "lead-guide", "admin"]
Difficulty = Literal["easy", "medium", "difficult"]


def validate_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValueError(f"'{value}' is not a valid id")


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


ObjectIdField = Annotated[Any, PlainValidator(validate_object_id)]
UTCDateTime = Annotated[datetime, AfterValidator(_naive_utc)]


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class Location(BaseModel):
    type: Literal["Point"] = "Point"
    # GeoJSON order: longitude, latitude
    coordinates: List[float] = Field(..., min_length=2, max_length=2)
    address: Optional[str] = None
    description: Optional[str] = None
    day: Optional[int] = None


class Tour(Document):
    name: str = Field(..., min_length=5, max_length=50)
    slug: Optional[str] = None
    duration: int = Field(..., gt=0)
    max_group_size: int = Field(..., gt=0, alias="maxGroupSize")
    difficulty: Difficulty
    ratings_average: float = Field(4.5, ge=1, le=5, alias="ratingsAverage")
    ratings_quantity: int = Field(0, ge=0, alias="ratingsQuantity")
    price: float = Field(..., gt=0)
    price_discount: Optional[float] = Field(None, ge=0, alias="priceDiscount")
    summary: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_cover: str = Field(..., min_length=1, alias="imageCover")
    images: List[str] = Field(default_factory=list)
    created_at: UTCDateTime = Field(default_factory=_utcnow, alias="createdAt")
    start_dates: List[UTCDateTime] = Field(default_factory=list, alias="startDates")
    secret_tour: bool = Field(False, alias="secretTour")
    start_location: Optional[Location] = Field(None, alias="startLocation")
    locations: List[Location] = Field(default_factory=list)
    guides: List[ObjectIdField] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_discount_and_slug(self):
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError(
                f"Discount price ({self.price_discount:g}) should be below the regular price"
            )
        self.slug = slugify(self.name)
        return self


class User(Document):
    name: str = Field(..., min_length=1)
    email: EmailStr
    photo: Optional[str] = None
    role: Role = "user"
    password: str = Field(..., description="BCrypt hash of password")
    password_changed_at: Optional[UTCDateTime] = Field(None, alias="passwordChangedAt")
    password_reset_token: Optional[str] = Field(None, alias="passwordResetToken")
    password_reset_expires: Optional[UTCDateTime] = Field(None, alias="passwordResetExpires")
    active: bool = True

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class Review(Document):
    review: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=5)
    created_at: UTCDateTime = Field(default_factory=_utcnow, alias="createdAt")
    tour: ObjectIdField
    user: ObjectIdField


# Request bodies

class PasswordPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(..., min_length=8)
    password_confirm: str = Field(..., alias="passwordConfirm")

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class SignupRequest(PasswordPair):
    name: str = Field(..., min_length=1)
    email: EmailStr
    photo: Optional[str] = None


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: str


class UpdatePasswordRequest(PasswordPair):
    password_current: str = Field(..., alias="passwordCurrent")
