"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# ============ Auth Schemas ============

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: Optional[str] = None


class UserLogin(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    created_at: datetime
    is_active: bool

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ============ Instance Schemas ============

class InstanceCreate(ApiModel):
    name: str = Field(min_length=1, max_length=50)
    region: Optional[str] = None
    ai_model: Optional[str] = None
    provider: Optional[Literal["docker", "fly"]] = None
    telegram_bot_token: Optional[str] = None


class InstanceUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    ai_model: Optional[str] = None
    region: Optional[str] = None


class InstanceResponse(ApiModel):
    id: str
    user_id: str
    name: str
    provider: str
    status: str
    region: str
    ai_model: str
    fly_app_name: Optional[str] = None
    fly_machine_id: Optional[str] = None
    docker_container_id: Optional[str] = None
    docker_port: Optional[int] = None
    ip_address: Optional[str] = None
    telegram_bot_token: Optional[str] = None  # masked
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TelegramTokenRequest(ApiModel):
    token: str = Field(min_length=1)


class TelegramTokenValidation(ApiModel):
    valid: bool
    bot_username: Optional[str] = None
    bot_name: Optional[str] = None
    error: Optional[str] = None


# ============ Chat Schemas ============

class ChatRequest(ApiModel):
    message: str = Field(min_length=1)
    file_path: Optional[str] = None


class ChatResponse(ApiModel):
    response: str


class UploadResponse(ApiModel):
    file_path: str
    file_name: str
    file_size: int
    mime_type: str


class ChatMessageResponse(ApiModel):
    id: str
    role: str
    content: str
    created_at: datetime


# ============ Integration Schemas ============

class IntegrationResponse(ApiModel):
    id: str
    slug: str
    name: str
    description: str
    category: str
    icon_url: Optional[str] = None
    provider: str
    auth_type: str
    oauth_scopes: List[str]
    is_official: bool


class UserIntegrationResponse(ApiModel):
    """A user's connection. Token material is never part of the response."""
    id: str
    integration_id: str
    integration: IntegrationResponse
    account_identifier: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    connected_at: datetime
    last_refreshed_at: Optional[datetime] = None


class OAuthInitiateRequest(ApiModel):
    integration_id: str


class OAuthInitiateResponse(ApiModel):
    authorization_url: str
    state: str


class EnableIntegrationRequest(ApiModel):
    user_integration_id: str


class InstanceIntegrationResponse(ApiModel):
    id: str
    instance_id: str
    user_integration_id: str
    integration: IntegrationResponse
    account_identifier: Optional[str] = None
    enabled_at: datetime


# ============ Proxy Schemas ============

ProxyMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class ProxyRequest(ApiModel):
    instance_id: str
    method: ProxyMethod = "GET"
    endpoint: str
    params: Optional[Dict[str, str]] = None
    body: Any = None


# ============ Billing Schemas ============

class CheckoutRequest(ApiModel):
    plan: Literal["starter", "pro", "enterprise"]


class UrlResponse(ApiModel):
    url: str


class SubscriptionResponse(ApiModel):
    id: str
    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: Optional[str] = None
    status: str
    plan: Optional[str] = None
    instance_limit: int
    current_period_start: Optional[datetime] = None
    current_period_end: datetime
    cancel_at_period_end: bool
    created_at: datetime
    updated_at: datetime


class PlanResponse(ApiModel):
    id: str
    name: str
    instance_limit: int
    price_id: Optional[str] = None


class SubscriptionStatusResponse(ApiModel):
    subscription: Optional[SubscriptionResponse] = None
    plans: List[PlanResponse]


class InvoiceResponse(ApiModel):
    id: str
    number: Optional[str] = None
    status: Optional[str] = None
    amount_due: Optional[int] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None
    created: Optional[int] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
