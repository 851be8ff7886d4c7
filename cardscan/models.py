"""Pydantic models for contacts, events, lead categories and auth records.

Every model persists with camelCase keys (``linkedinUrl``, ``createdAt``,
``categoryIds`` ...) so stored JSON keeps the shape the mobile client wrote.
Python code uses the snake_case attribute names; both spellings are accepted
on input.

Cross-collection references (``event_id``, ``category_ids``) are soft ids:
nothing here enforces that the referenced entity exists.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


NON_CATEGORIZED_EVENT_ID = "non-categorized"


def utc_now_iso() -> str:
    """ISO-8601 timestamp in UTC with a ``Z`` suffix (JavaScript ``toISOString`` shape)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CamelModel(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def _dedupe_ids(value: list[str] | None) -> list[str]:
    if not value:
        return []
    seen: set[str] = set()
    out: list[str] = []
    for item in value:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

# Fields enrichment is allowed to fill (only when currently empty)
ENRICHABLE_FIELDS = (
    "linkedin_url",
    "profile_photo_url",
    "email",
    "office_phone",
    "cell_phone",
    "fax_phone",
)

# Fields a user edit may never change
IMMUTABLE_CONTACT_FIELDS = ("id", "created_at")


class Contact(CamelModel):
    """One scanned or manually entered business card."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",  # keep keys written by newer clients on write-back
    )

    id: str
    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    office_phone: Optional[str] = None
    cell_phone: Optional[str] = None
    fax_phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    linkedin_url: Optional[str] = None
    profile_photo_url: Optional[str] = None
    event_id: Optional[str] = None
    category_ids: list[str] = Field(default_factory=list)
    # Set once by capture; legacy records without one stay without one
    created_at: Optional[str] = None

    @field_validator("category_ids", mode="before")
    @classmethod
    def _unique_category_ids(cls, value):
        return _dedupe_ids(value)

    def is_blank(self, field_name: str) -> bool:
        """True when ``field_name`` holds null or an empty/whitespace string."""
        value = getattr(self, field_name)
        return value is None or (isinstance(value, str) and not value.strip())


class ContactDraft(CamelModel):
    """User-supplied fields for a contact that does not exist yet."""
    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    office_phone: Optional[str] = None
    cell_phone: Optional[str] = None
    fax_phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    linkedin_url: Optional[str] = None
    event_id: Optional[str] = None
    category_ids: list[str] = Field(default_factory=list)

    @field_validator("category_ids", mode="before")
    @classmethod
    def _unique_category_ids(cls, value):
        return _dedupe_ids(value)


class ContactUpdate(CamelModel):
    """Partial edit. Only fields explicitly present in the payload are applied."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    office_phone: Optional[str] = None
    cell_phone: Optional[str] = None
    fax_phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    linkedin_url: Optional[str] = None
    profile_photo_url: Optional[str] = None
    event_id: Optional[str] = None
    category_ids: Optional[list[str]] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class Event(CamelModel):
    """A named grouping of contacts (trade show, conference, ...)."""
    id: str
    name: str
    description: Optional[str] = None
    color: str
    created_at: str = Field(default_factory=utc_now_iso)

    @property
    def is_sentinel(self) -> bool:
        return self.id == NON_CATEGORIZED_EVENT_ID


class EventCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Event name must not be empty")
        return value


class EventUpdate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            raise ValueError("Event name must not be empty")
        return value.strip()

    @field_validator("color")
    @classmethod
    def _color_not_null(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("Event color must not be null")
        return value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Lead categories
# ---------------------------------------------------------------------------

class LeadCategory(CamelModel):
    """A user-defined coloured tag; contacts reference it by id."""
    id: str
    title: str
    description: str = ""
    color: str


class LeadCategoryCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    color: str = Field(..., min_length=1)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category title must not be empty")
        return value


class LeadCategoryUpdate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            raise ValueError("Category title must not be empty")
        return value.strip()

    @field_validator("color")
    @classmethod
    def _color_not_null(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("Category color must not be null")
        return value

    @field_validator("description")
    @classmethod
    def _description_default(cls, value: Optional[str]) -> str:
        return value or ""

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Auth backend records
# ---------------------------------------------------------------------------

class StoredUser(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    password: str  # salted hash; legacy records may still hold plaintext
    created_at: str = Field(default_factory=utc_now_iso)

    def public(self) -> "PublicUser":
        return PublicUser(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
        )


class PublicUser(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str


class StoredSession(CamelModel):
    user_id: str
    created_at: str = Field(default_factory=utc_now_iso)


class UsersIndex(CamelModel):
    user_ids: list[str] = Field(default_factory=list)
    email_to_id: dict[str, str] = Field(default_factory=dict)
