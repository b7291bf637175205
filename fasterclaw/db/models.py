"""
Database models for the FasterClaw control plane

- Users and their OpenClaw instances (Docker containers or Fly.io machines)
- Durable provisioning tasks for background instance creation
- OAuth integrations: catalog, per-user connections, per-instance bindings
- Stripe subscription mirror
- Web chat transcript
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Integer, Boolean, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column, declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class InstanceStatus(str, Enum):
    """Lifecycle states of an instance.

    CREATING -> RUNNING | FAILED, RUNNING <-> STOPPED, FAILED -> CREATING (retry),
    any non-DELETED state -> DELETED. STARTING/STOPPING/UNKNOWN only appear when
    status is synced from the provider.
    """
    CREATING = "CREATING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"
    DELETED = "DELETED"
    STARTING = "STARTING"
    STOPPING = "STOPPING"
    UNKNOWN = "UNKNOWN"


class ProviderKind(str, Enum):
    DOCKER = "docker"
    FLY = "fly"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    UNPAID = "UNPAID"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    instances: Mapped[List["Instance"]] = relationship("Instance", back_populates="user")


class Instance(Base):
    """One OpenClaw agent deployment owned by a user."""
    __tablename__ = "instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default=ProviderKind.FLY.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InstanceStatus.CREATING.value)
    region: Mapped[str] = mapped_column(String(20), nullable=False, default="iad")
    ai_model: Mapped[str] = mapped_column(String(100), nullable=False, default="claude-sonnet-4-0")
    # Provider-side identifiers (populated by provisioning)
    fly_app_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    fly_machine_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    docker_container_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    docker_port: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Encrypted with services.encryption; only a masked form ever leaves the API
    encrypted_telegram_bot_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="instances")
    integrations: Mapped[List["InstanceIntegration"]] = relationship(
        "InstanceIntegration", back_populates="instance", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_instances_user_id", "user_id"),
        Index("ix_instances_status", "status"),
    )


class ProvisioningTask(Base):
    """A queued/executed provisioning attempt for an instance."""
    __tablename__ = "provisioning_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    instance_id: Mapped[str] = mapped_column(String(36), ForeignKey("instances.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="create")  # create | retry
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_provisioning_tasks_instance_id", "instance_id"),
        Index("ix_provisioning_tasks_status", "status"),
    )


class Integration(Base):
    """Catalog entry for a connectable third-party service."""
    __tablename__ = "integrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="productivity")
    icon_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # slack | github | google
    auth_type: Mapped[str] = mapped_column(String(20), nullable=False, default="oauth2")
    oauth_scopes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_official: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_integrations_provider", "provider"),
    )


class UserIntegration(Base):
    """A user's OAuth connection. Tokens are stored encrypted only."""
    __tablename__ = "user_integrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    integration_id: Mapped[str] = mapped_column(String(36), ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False)
    encrypted_access_token: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    account_identifier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    connected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_refreshed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    integration: Mapped["Integration"] = relationship("Integration")
    instance_bindings: Mapped[List["InstanceIntegration"]] = relationship(
        "InstanceIntegration", back_populates="user_integration", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "integration_id", name="uq_user_integrations_user_integration"),
        Index("ix_user_integrations_user_id", "user_id"),
    )


class InstanceIntegration(Base):
    """Grants an instance use of a user integration through the proxy."""
    __tablename__ = "instance_integrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    instance_id: Mapped[str] = mapped_column(String(36), ForeignKey("instances.id", ondelete="CASCADE"), nullable=False)
    user_integration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_integrations.id", ondelete="CASCADE"), nullable=False
    )
    enabled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    instance: Mapped["Instance"] = relationship("Instance", back_populates="integrations")
    user_integration: Mapped["UserIntegration"] = relationship("UserIntegration", back_populates="instance_bindings")

    __table_args__ = (
        UniqueConstraint("instance_id", "user_integration_id", name="uq_instance_integrations_binding"),
        Index("ix_instance_integrations_instance_id", "instance_id"),
    )


class Subscription(Base):
    """Local cache of a Stripe subscription. Only webhooks and checkout write it."""
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    plan: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # starter | pro | enterprise
    instance_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # -1 = unlimited
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_subscriptions_user_id", "user_id"),
    )


class ChatMessage(Base):
    """Web chat transcript entry for one (instance, user) session."""
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    instance_id: Mapped[str] = mapped_column(String(36), ForeignKey("instances.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_chat_messages_instance_user", "instance_id", "user_id"),
    )
