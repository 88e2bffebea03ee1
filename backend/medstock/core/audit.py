"""
Audit logging for stock-affecting and security-relevant operations.

Every change to drugs.stock, every order item status change and every denied
access attempt is written to the "audit" logger as one JSON line, so it can be
shipped to centralized logging independently of application logs.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional, Dict

# Separate logger for audit events
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging."""

    @staticmethod
    def log_action(
        action: str,  # "create", "update", "delete", "import"
        resource_type: str,  # "drug", "dispensing", "drug_type", "drug_name"
        resource_id: Optional[int],
        user_id: int,
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Log business-critical actions.

        Usage:
            AuditLog.log_action("delete", "drug", 456, current_user.id, changes={"name": "Paracetamol"})
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"{resource_type}.{action}",
            "user_id": user_id,
            "resource_id": resource_id,
        }
        if changes:
            log_entry["changes"] = changes

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_stock_change(
        drug_id: int,
        delta: int,
        stock_after: int,
        reason: str,
        user_id: Optional[int] = None,
        reference: Optional[str] = None,
    ):
        """
        Log a stock mutation. Mirrors the stock_movements row written in the same transaction.

        Usage:
            AuditLog.log_stock_change(7, -10, 90, "order_approved", user_id=2, reference="order_item:12")
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"stock.{reason}",
            "drug_id": drug_id,
            "delta": delta,
            "stock_after": stock_after,
            "user_id": user_id,
        }
        if reference:
            log_entry["reference"] = reference

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_status_change(
        item_id: int,
        old_status: str,
        new_status: str,
        user_id: int,
        quantity: Optional[int] = None,
    ):
        log_entry = {
            "timestamp": _now(),
            "event_type": "order_item.status_changed",
            "item_id": item_id,
            "old_status": old_status,
            "new_status": new_status,
            "user_id": user_id,
        }
        if quantity is not None:
            log_entry["quantity"] = quantity

        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_access_denied(
        action: str,  # "read", "write", "delete", "approve"
        resource_type: str,
        resource_id: Optional[int],
        user_id: Optional[int],
        reason: str,
    ):
        """
        Log denied access attempts.

        Track users reaching for other owners' drugs or order items, and role
        mismatches on protected routes.

        Usage:
            AuditLog.log_access_denied("approve", "order_item", 789, 2, "Not seller or recipient")
        """
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "reason": reason,
        }

        audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_sql_rejected(user_id: int, reason: str, invalid_tokens: Optional[list] = None):
        """Generated chatbot SQL refused by the allow-list validator."""
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "chatbot.sql_rejected",
            "user_id": user_id,
            "reason": reason,
        }
        if invalid_tokens:
            log_entry["invalid_tokens"] = invalid_tokens

        audit_logger.warning(json.dumps(log_entry))

    @staticmethod
    def log_api_call(
        endpoint: str,
        method: str,
        user_id: Optional[int] = None,
        ip_address: str = "",
        status_code: int = 200,
        duration_ms: float = 0,
    ):
        """
        Log API calls for performance and security monitoring.

        Usage:
            AuditLog.log_api_call("/seller/orders", "GET", ip_address="10.0.0.4", status_code=200, duration_ms=45.3)
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "api.call",
            "endpoint": endpoint,
            "method": method,
            "user_id": user_id,
            "ip_address": ip_address,
            "status_code": status_code,
            "duration_ms": duration_ms,
        }

        audit_logger.info(json.dumps(log_entry))
