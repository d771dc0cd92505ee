import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from .models import AuditEntry
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    USER_BALANCES_UPDATED = "USER_BALANCES_UPDATED"
    USER_GATES_UPDATED = "USER_GATES_UPDATED"
    USER_SUSPENDED = "USER_SUSPENDED"
    USER_UNSUSPENDED = "USER_UNSUSPENDED"
    USER_BLOCKED = "USER_BLOCKED"
    USER_UNBLOCKED = "USER_UNBLOCKED"
    USER_PIN_RESET = "USER_PIN_RESET"
    USER_PLAN_ASSIGNED = "USER_PLAN_ASSIGNED"
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_APPROVED = "TRANSACTION_APPROVED"
    TRANSACTION_DECLINED = "TRANSACTION_DECLINED"
    TRANSACTION_BACKDATED = "TRANSACTION_BACKDATED"
    PROFIT_CREDITED = "PROFIT_CREDITED"
    KYC_APPROVED = "KYC_APPROVED"
    KYC_DECLINED = "KYC_DECLINED"
    KYC_STATUS_SET = "KYC_STATUS_SET"
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_UPDATED = "PLAN_UPDATED"
    PLAN_DELETED = "PLAN_DELETED"


class AuditTrail:
    """Append-only log of administrative actions."""

    def __init__(self, storage: InMemoryStorage, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def record(
        self,
        admin_id: str,
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[str] = None,
        **details: Any,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=uuid4(),
            admin_id=admin_id,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            details={k: str(v) if v is not None else None for k, v in details.items()},
            created_at=self.clock(),
        )
        self.storage.append_audit(entry)
        logger.info("Audit: %s %s %s by %s", action.value, entity_type, entity_id, admin_id)
        return entry

    def entries(self, entity_id: Optional[str] = None) -> list[AuditEntry]:
        return self.storage.list_audit(entity_id)
