"""
Deterministic Markdown replies.

Used when the text model is unavailable, times out, or returns nothing.
Also hosts the reply guard applied to every model-written reply.

The formatter never invents values: every cell comes from the data passed in.
"""

import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

NO_DATA_REPLY = "No relevant data found in the system for your query."
HEDGING_REPLY = (
    "I can only provide information based on actual data in the system. "
    "Please ask about specific records or check the available data."
)

CRITICAL_STOCK = 5
LOW_STOCK = 15
HIGH_STOCK = 500
GENERIC_ROW_LIMIT = 10

_NO_DATA_WORDS = re.compile(r"no data|not found|unavailable", re.IGNORECASE)
_HEDGING = re.compile(
    r"\b(i assume|probably|likely|approximately|typically|usually|"
    r"based on common practice|generally|most likely)\b",
    re.IGNORECASE,
)

STATUS_ICONS = {
    "pending": "⏳",
    "approved": "✅",
    "rejected": "❌",
    "shipped": "🚚",
}


def status_icon(status: Optional[str]) -> str:
    return STATUS_ICONS.get((status or "").lower(), "•")


def stock_indicator(stock: Any) -> str:
    try:
        value = int(stock)
    except (TypeError, ValueError):
        return ""
    if value < CRITICAL_STOCK:
        return "🔴 Critical"
    if value < LOW_STOCK:
        return "🟠 Low"
    if value > HIGH_STOCK:
        return "🔵 High"
    return "🟢 OK"


def has_data(data: Any) -> bool:
    """True when there is at least one record (or non-zero count) to talk about."""
    if data is None:
        return False
    if isinstance(data, list):
        return len(data) > 0
    if isinstance(data, dict):
        return any(has_data(v) if isinstance(v, (list, dict)) else bool(v) for v in data.values())
    return True


def guard_reply(reply: str, data: Any) -> str:
    """
    Reject model replies that go beyond the data.

    - data empty and the reply does not admit it -> fixed no-data reply
    - hedging language (probably, usually, ...) -> fixed data-only reply
    """
    if not has_data(data) and not _NO_DATA_WORDS.search(reply):
        logger.info("Reply guard: model answered without data")
        return NO_DATA_REPLY
    if _HEDGING.search(reply):
        logger.info("Reply guard: hedging language in model reply")
        return HEDGING_REPLY
    return reply


# ==============================================================================
# TABLES
# ==============================================================================

def _cell(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return str(value).replace("|", "\\|").replace("\n", " ")


def _table(headers: List[str], rows: List[List[Any]]) -> str:
    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    lines.extend("| " + " | ".join(_cell(v) for v in row) + " |" for row in rows)
    return "\n".join(lines)


def _drug_table(drugs: List[dict]) -> str:
    return _table(
        ["Name", "Batch", "Stock", "Level", "Expiry", "Price"],
        [
            [d.get("name"), d.get("batch_no"), d.get("stock"), stock_indicator(d.get("stock")),
             d.get("exp_date"), d.get("price")]
            for d in drugs
        ],
    )


def _expiring_table(drugs: List[dict]) -> str:
    return _table(
        ["Name", "Batch", "Stock", "Expiry", "Days Left"],
        [
            [d.get("name"), d.get("batch_no"), d.get("stock"), d.get("exp_date"), d.get("days_until_expiry")]
            for d in drugs
        ],
    )


def _order_table(orders: List[dict]) -> str:
    return _table(
        ["Order No", "Date", "Buyer", "Items", "Total", "Status"],
        [
            [o.get("order_no"), o.get("created_at") or o.get("order_date"), o.get("buyer_name"),
             o.get("item_count"), o.get("total_amount"),
             f"{status_icon(o.get('status'))} {o.get('status')}" if o.get("status") else None]
            for o in orders
        ],
    )


def _item_table(items: List[dict]) -> str:
    return _table(
        ["Order No", "Drug", "Qty", "Unit Price", "Status"],
        [
            [i.get("order_no"), i.get("drug_name"), i.get("quantity"), i.get("unit_price"),
             f"{status_icon(i.get('status'))} {i.get('status')}"]
            for i in items
        ],
    )


def _user_table(users: List[dict]) -> str:
    return _table(
        ["Name", "Email", "Role", "Status", "City"],
        [[u.get("name"), u.get("email"), u.get("role"), u.get("status"), u.get("city")] for u in users],
    )


def _generic_table(rows: List[dict]) -> str:
    headers = list(rows[0].keys())
    body = [[row.get(h) for h in headers] for row in rows[:GENERIC_ROW_LIMIT]]
    text = _table(headers, body)
    if len(rows) > GENERIC_ROW_LIMIT:
        text += f"\n\n_Showing {GENERIC_ROW_LIMIT} of {len(rows)} rows._"
    return text


def _format_rows(rows: List[dict]) -> str:
    if not rows:
        return NO_DATA_REPLY
    first = rows[0]
    if not isinstance(first, dict):
        return _generic_table([{"value": r} for r in rows])
    if "stock" in first and "name" in first:
        return f"## Drugs ({len(rows)})\n\n" + _drug_table(rows)
    if "order_no" in first and "drug_name" not in first:
        return f"## Orders ({len(rows)})\n\n" + _order_table(rows)
    return f"## Results ({len(rows)})\n\n" + _generic_table(rows)


def _orders_title(role: str) -> str:
    if role == "institute":
        return "Incoming Orders"
    if role == "pharmacy":
        return "Outgoing Orders"
    return "Orders"


def _format_sections(data: Dict[str, Any], role: str) -> str:
    parts: List[str] = []

    drugs = data.get("drugs") or data.get("inventory") or []
    if drugs:
        parts.append(f"## 💊 Drug Inventory ({len(drugs)})\n\n" + _drug_table(drugs))
        critical = [d for d in drugs if isinstance(d.get("stock"), int) and d["stock"] < CRITICAL_STOCK]
        if critical:
            names = ", ".join(str(d.get("name")) for d in critical)
            parts.append(f"⚠️ **Critical stock:** {names}")

    critical_stock = data.get("critical_stock") or []
    if critical_stock:
        parts.append(f"## 🔴 Critical Stock ({len(critical_stock)})\n\n" + _drug_table(critical_stock))

    expiring = data.get("expiring_soon") or []
    if expiring:
        parts.append(f"## ⏰ Expiring Soon ({len(expiring)})\n\n" + _expiring_table(expiring))

    orders = data.get("orders") or []
    if orders:
        parts.append(f"## 📦 {_orders_title(role)} ({len(orders)})\n\n" + _order_table(orders))

    pending_orders = data.get("pending_orders") or []
    if pending_orders:
        parts.append(f"## ⏳ Pending Orders ({len(pending_orders)})\n\n" + _order_table(pending_orders))

    items = data.get("order_items") or data.get("pending_approvals") or []
    if items:
        title = "Pending Approvals" if "pending_approvals" in data and not data.get("order_items") else "Order Items"
        parts.append(f"## 🧾 {title} ({len(items)})\n\n" + _item_table(items))

    users = data.get("users") or data.get("institutes") or []
    if users:
        parts.append(f"## 👥 Users ({len(users)})\n\n" + _user_table(users))

    counts = data.get("counts") or {}
    if counts:
        lines = [f"- **{key.replace('_', ' ').title()}:** {value}" for key, value in counts.items()]
        parts.append("## 📊 Summary\n\n" + "\n".join(lines))

    if not parts:
        return NO_DATA_REPLY
    return "\n\n".join(parts)


def format_response(data: Any, role: str, question: str = "") -> str:
    """
    Render query results as Markdown without the text model.

    Args:
        data: list of row dicts (dynamic SQL) or dict of named sections (predefined queries)
        role: caller role, used for section titles
        question: original question, echoed in the log only

    Returns:
        Markdown reply
    """
    logger.info(f"🔄 Formatting reply without LLM for role={role}: {question[:50]}")
    role = (role or "").lower()
    if isinstance(data, list):
        return _format_rows(data)
    if isinstance(data, dict):
        return _format_sections(data, role)
    return NO_DATA_REPLY
