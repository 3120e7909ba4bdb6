"""Closed variant sets used across the delivery core.

Every notification type, priority and status is a ``str``-valued
``Enum`` so values round-trip through JSON and the database unchanged,
while unknown strings are rejected at the edge by the enum constructor.
"""
from __future__ import annotations

from enum import Enum


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: lower ranks are delivered first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.HIGH: 0,
    Priority.NORMAL: 1,
    Priority.LOW: 2,
}


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    DEAD = "dead"


class NotificationType(str, Enum):
    LOW_REVENUE = "low_revenue"
    HIGH_EXPENSE = "high_expense"
    REVENUE_MISMATCH = "revenue_mismatch"
    INVENTORY_LOW = "inventory_low"
    MONTHLY_REMINDER = "monthly_reminder"
    EMPLOYEE_REQUEST = "employee_request"
    PRODUCT_UPDATE = "product_update"
    PAYROLL_CREATED = "payroll_created"
    WEEKLY_REPORT = "weekly_report"
    MONTHLY_REPORT = "monthly_report"
    BONUS_REQUEST = "bonus_request"
    MISSING_REVENUE = "missing_revenue"
    INVENTORY_REMINDER = "inventory_reminder"
    PAYROLL_REMINDER = "payroll_reminder"
    DOCUMENT_EXPIRY = "document_expiry"
    PERFORMANCE_ALERT = "performance_alert"
    GENERAL = "general"


class TrackedType(str, Enum):
    """Batch types that may fire at most once per calendar day."""

    INVENTORY_REMINDER = "inventory_reminder"
    PAYROLL_REMINDER = "payroll_reminder"
    MONTHLY_INVENTORY_REMINDER = "monthly_inventory_reminder"
    WEEKLY_REPORT = "weekly_report"
    DAILY_REVENUE_REMINDER = "daily_revenue_reminder"
    LOW_STOCK_ALERT = "low_stock_alert"
    DOCUMENT_EXPIRY_REMINDER = "document_expiry_reminder"
    PERFORMANCE_ALERT = "performance_alert"


class ExecutionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ExecutionTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    DEAD_LETTER_RETRY = "dead_letter_retry"
