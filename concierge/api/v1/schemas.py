from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Auth ---


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=8)
    business_name: str = Field(min_length=2, max_length=255)
    business_type: Literal["hotel", "tour_operator", "vacation_rental"]
    tier: Literal["starter", "professional"] = "starter"

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class BusinessResponse(ApiModel):
    id: UUID
    email: str
    slug: str
    name: str
    business_type: str
    tier: str
    primary_color: str
    logo_url: str | None = None
    welcome_message: str | None = None
    business_info: dict = Field(default_factory=dict)
    created_at: datetime | None = None


class AuthResponse(ApiModel):
    token: str
    business: BusinessResponse


class AdminResponse(ApiModel):
    id: UUID
    email: str
    name: str | None = None
    role: str


class AdminAuthResponse(ApiModel):
    token: str
    user: AdminResponse
    is_admin: bool = True


class MeResponse(ApiModel):
    business: BusinessResponse
    effective_tier: str
    warning: str | None = None
    grace_period_ends: datetime | None = None


# --- Conversations ---


class MessageResponse(ApiModel):
    id: UUID
    role: str
    content: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    delivery_status: str | None = None
    delivered_at: datetime | None = None
    created_at: datetime


class BusinessSummary(ApiModel):
    name: str
    tier: str
    primary_color: str
    welcome_message: str | None = None


class ConversationResponse(ApiModel):
    id: UUID
    business_id: UUID
    session_id: str | None = None
    channel: str
    external_contact: str | None = None
    satisfaction: int | None = None
    resolved: bool
    created_at: datetime
    updated_at: datetime


class ConversationDetailResponse(ConversationResponse):
    messages: list[MessageResponse] = Field(default_factory=list)
    business: BusinessSummary | None = None


class ConversationSummaryResponse(ConversationResponse):
    last_message: MessageResponse | None = None
    message_count: int = 0


class ConversationPatchRequest(ApiModel):
    conversation_id: UUID
    satisfaction: int | None = Field(default=None, ge=1, le=5)
    resolved: bool | None = None


# --- Widget ---


class RatingRequest(ApiModel):
    conversation_id: UUID
    rating: int = Field(ge=1, le=5)
    feedback: str | None = Field(default=None, max_length=2000)


class RatingResponse(ApiModel):
    success: bool = True
    message: str = "Thank you for your feedback!"


class WidgetChatRequest(ApiModel):
    business_id: UUID
    session_id: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1, max_length=4000)


class WidgetChatResponse(ApiModel):
    conversation_id: UUID
    reply: str


# --- Channels ---


class ChannelConfigRequest(ApiModel):
    config: dict
    is_active: bool = True


class ChannelConfigResponse(ApiModel):
    id: UUID
    channel: str
    routing_key: str
    is_active: bool
    config: dict
    webhook_url: str | None = None
    updated_at: datetime | None = None


# --- Knowledge base ---


class KnowledgeEntryCreate(ApiModel):
    category: str = Field(min_length=1, max_length=128)
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    keywords: str = ""
    priority: int = Field(default=0, ge=0, le=10)
    language: str = "en"
    is_active: bool = True


class KnowledgeEntryUpdate(ApiModel):
    category: str | None = Field(default=None, min_length=1, max_length=128)
    question: str | None = Field(default=None, min_length=1)
    answer: str | None = Field(default=None, min_length=1)
    keywords: str | None = None
    priority: int | None = Field(default=None, ge=0, le=10)
    language: str | None = None
    is_active: bool | None = None


class KnowledgeEntryResponse(ApiModel):
    id: UUID
    category: str
    question: str
    answer: str
    keywords: str
    priority: int
    language: str
    is_active: bool
    created_at: datetime


class KnowledgeListResponse(ApiModel):
    items: list[KnowledgeEntryResponse] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    limit: int


# --- Subscription / features ---


class SubscriptionResponse(ApiModel):
    tier: str
    effective_tier: str
    status: str
    billing_cycle: str = "monthly"
    payment_status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    cancel_at_period_end: bool = False
    warning: str | None = None
    grace_period_ends: datetime | None = None


class FeaturesResponse(ApiModel):
    tier: str
    areas: dict[str, bool]
    knowledge_base_items: int
    conversations_per_day: int
    channels: list[str]
    warning: str | None = None


class RouteCheckResponse(ApiModel):
    route: str
    allowed: bool
    area: str | None = None
    required_tier: str | None = None
    message: str | None = None


# --- Guests ---


class GuestProfileResponse(ApiModel):
    id: UUID
    phone: str | None = None
    email: str | None = None
    name: str | None = None
    language_preference: str
    last_visit: datetime | None = None


# --- Admin ---


class TierUpdateRequest(ApiModel):
    tier: str


class PaymentEventRequest(ApiModel):
    outcome: Literal["failed", "succeeded"]


class PaymentEventResponse(ApiModel):
    status: str
    warning: str | None = None
    grace_period_ends: datetime | None = None


class PurgeResponse(ApiModel):
    business_id: UUID
    deleted: dict[str, int]
