from fasterclaw.db.models import (
    Base, User, Instance, InstanceStatus, ProviderKind,
    ProvisioningTask, TaskStatus,
    # Integrations
    Integration, UserIntegration, InstanceIntegration,
    # Billing
    Subscription, SubscriptionStatus,
    ChatMessage,
)
from fasterclaw.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "Instance",
    "InstanceStatus",
    "ProviderKind",
    "ProvisioningTask",
    "TaskStatus",
    # Integrations
    "Integration",
    "UserIntegration",
    "InstanceIntegration",
    # Billing
    "Subscription",
    "SubscriptionStatus",
    "ChatMessage",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
