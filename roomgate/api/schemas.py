from __future__ import annotations

import re
import unicodedata
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from roomgate.service.provisioning import UserCandidate
from roomgate.service.room_hash import RoomOptions
from roomgate.storage.models import Address, RemoteSessionProfile

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_LOGIN_PATTERN = re.compile(r"^[\w.@+-]+$")


def _validate_email(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


class AddressDTO(BaseModel):
    street: Optional[str] = Field(default=None, max_length=255)
    zip: Optional[str] = Field(default=None, max_length=32)
    town: Optional[str] = Field(default=None, max_length=128)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    phone: Optional[str] = Field(default=None, max_length=64)

    def to_address(self) -> Address:
        return Address(
            street=self.street,
            zip=self.zip,
            town=self.town,
            country=self.country.upper() if self.country else None,
            phone=self.phone,
        )


class UserDTO(BaseModel):
    """Account submitted for creation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    login: str = Field(..., min_length=1, max_length=128)
    password: Optional[str] = Field(default=None, max_length=1024)
    email: Optional[str] = None
    firstname: Optional[str] = Field(default=None, max_length=255)
    lastname: Optional[str] = Field(default=None, max_length=255)
    language_id: Optional[int] = Field(default=None, ge=1)
    timezone_id: Optional[str] = Field(default=None, max_length=64)
    address: Optional[AddressDTO] = None
    external_id: Optional[str] = Field(default=None, max_length=255)
    external_type: Optional[str] = Field(default=None, max_length=64)

    @field_validator("login")
    @classmethod
    def _validate_login(cls, value: str) -> str:
        if not _LOGIN_PATTERN.match(value):
            raise ValueError("login may only contain letters, digits and . @ + - _")
        return value

    @field_validator("email")
    @classmethod
    def _validate_user_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return _validate_email(value)

    def to_candidate(self) -> UserCandidate:
        return UserCandidate(
            login=self.login,
            password=self.password,
            email=self.email,
            firstname=self.firstname,
            lastname=self.lastname,
            language_id=self.language_id,
            timezone_id=self.timezone_id,
            address=self.address.to_address() if self.address else None,
            external_id=self.external_id or None,
            external_type=self.external_type or None,
        )


class ExternalUserDTO(BaseModel):
    """Identity an external system vouches for when asking for a room hash."""

    login: Optional[str] = Field(default=None, max_length=128)
    firstname: Optional[str] = Field(default=None, max_length=255)
    lastname: Optional[str] = Field(default=None, max_length=255)
    picture_url: Optional[str] = Field(default=None, max_length=2048)
    email: Optional[str] = Field(default=None, max_length=254)
    external_id: Optional[str] = Field(default=None, max_length=255)
    external_type: Optional[str] = Field(default=None, max_length=64)

    def to_profile(self) -> RemoteSessionProfile:
        return RemoteSessionProfile(**self.model_dump())


class RoomOptionsDTO(BaseModel):
    room_id: int
    moderator: bool = False
    show_audio_video_test: bool = False
    allow_same_url_multiple_times: bool = False
    recording_id: Optional[int] = None
    allow_recording: bool = False

    def to_options(self) -> RoomOptions:
        return RoomOptions(**self.model_dump())


class LoginRequest(BaseModel):
    user: str = Field(..., min_length=1, max_length=254, description="login or email")
    password: str = Field(..., max_length=1024)


class CreateUserRequest(BaseModel):
    user: UserDTO
    confirm: Optional[bool] = Field(
        default=None,
        description="request account confirmation; omitted means automatic",
    )


class RoomHashRequest(BaseModel):
    user: ExternalUserDTO
    options: RoomOptionsDTO
