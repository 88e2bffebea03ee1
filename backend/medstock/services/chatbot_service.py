"""
Chatbot orchestration.

1. Admin-class roles: ask the LLM for one SELECT, validate it against the
   allow-list, run it read-only under a statement timeout.
2. Otherwise (or when that yields nothing): run the predefined, role-scoped
   ORM queries picked by a keyword analysis of the question.
3. Compose the reply with the LLM from that data only, then guard it. If the
   LLM is unavailable the Markdown formatter answers instead.

Nothing here writes to the database; every read path ends in a rollback.
"""
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.core.config import settings
from medstock.core.exceptions import UpstreamUnavailableError, ValidationError
from medstock.core.permissions import ROLE_ADMIN, ROLE_INSTITUTE, ROLE_PHARMACY, role_of
from medstock.models.drug import Drug
from medstock.models.order import ITEM_PENDING, Order, OrderItem
from medstock.models.user import User
from medstock.schemas.chatbot import ChatMessage
from medstock_ai.fallback import format_response, guard_reply
from medstock_ai.groq_client import get_groq_client
from medstock_ai.intent_schema import QuestionAnalysis
from medstock_ai.prompts import build_data_prompt, system_prompt_for
from medstock_ai.sql_generator import generate_validated_sql

logger = logging.getLogger(__name__)

APOLOGY_REPLY = (
    "I'm experiencing technical difficulties. Please try again later "
    "or contact support if the issue persists."
)

QUERY_LIMIT = 25
DYNAMIC_ROW_LIMIT = 100
LOW_STOCK_THRESHOLD = 15
CRITICAL_STOCK_THRESHOLD = 5
HISTORY_LIMIT = 10


# ==============================================================================
# READ-ONLY DATABASE ACCESS
# ==============================================================================

def _set_statement_timeout(db: Session):
    """Transaction-scoped timeout; only PostgreSQL understands it."""
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(settings.CHATBOT_STATEMENT_TIMEOUT_MS)}"))


def _set_read_only(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SET TRANSACTION READ ONLY"))


def run_dynamic_sql(db: Session, sql: str) -> List[dict]:
    """
    Run an already validated SELECT in a read-only transaction.

    Errors yield an empty list. The transaction is always rolled back.
    """
    try:
        _set_read_only(db)
        _set_statement_timeout(db)
        result = db.execute(text(sql))
        rows = [jsonable_encoder(dict(row)) for row in result.mappings().fetchmany(DYNAMIC_ROW_LIMIT)]
        logger.info(f"Dynamic SQL returned {len(rows)} rows")
        return rows
    except SQLAlchemyError as e:
        logger.warning(f"Dynamic SQL failed, using predefined queries: {e}")
        return []
    finally:
        db.rollback()


def _safe(db: Session, name: str, query: Callable[[], Any]) -> Any:
    """One predefined query in its own savepoint; a failure yields []."""
    try:
        with db.begin_nested():
            return query()
    except SQLAlchemyError as e:
        logger.warning(f"Chatbot query '{name}' failed: {e}")
        return []


# ==============================================================================
# ROW SHAPES
# ==============================================================================

def _drug_row(d: Drug, today: Optional[date] = None) -> dict:
    row = {
        "id": d.id,
        "name": d.name,
        "drug_type": d.drug_type,
        "batch_no": d.batch_no,
        "stock": d.stock,
        "price": float(d.price or 0),
        "category": d.category,
        "mfg_date": d.mfg_date.isoformat() if d.mfg_date else None,
        "exp_date": d.exp_date.isoformat() if d.exp_date else None,
    }
    if today and d.exp_date:
        row["days_until_expiry"] = (d.exp_date - today).days
    return row


def _order_row(o: Order) -> dict:
    return {
        "id": o.id,
        "order_no": o.order_no,
        "created_at": o.created_at.isoformat() if o.created_at else None,
        "buyer_name": o.buyer.name if o.buyer else None,
        "recipient_name": o.recipient.name if o.recipient else None,
        "transaction_type": o.transaction_type,
        "item_count": len(o.items),
        "pending_items": sum(1 for i in o.items if i.status == ITEM_PENDING),
        "total_amount": float(o.total_amount or 0),
    }


def _item_row(i: OrderItem) -> dict:
    return {
        "id": i.id,
        "order_no": i.order.order_no if i.order else None,
        "drug_name": i.drug.name if i.drug else (i.custom_name or i.manufacturer_name),
        "quantity": i.quantity,
        "unit_price": float(i.unit_price or 0),
        "status": i.status,
        "seller_name": i.seller.name if i.seller else None,
    }


def _user_row(u: User) -> dict:
    # never include the password hash
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "status": u.status,
        "city": u.city,
    }


# ==============================================================================
# PREDEFINED QUERIES
# ==============================================================================

def _drugs(db: Session, owner_id: Optional[int], today: date, analysis: QuestionAnalysis) -> dict:
    q = db.query(Drug)
    if owner_id is not None:
        q = q.filter(Drug.created_by == owner_id)
    window_end = today + timedelta(days=analysis.expiry_window_days)
    return {
        "drugs": lambda: [_drug_row(d) for d in q.order_by(Drug.name, Drug.id).limit(QUERY_LIMIT).all()],
        "expiring_soon": lambda: [
            _drug_row(d, today)
            for d in q.filter(Drug.exp_date.isnot(None), Drug.exp_date >= today, Drug.exp_date <= window_end)
            .order_by(Drug.exp_date.asc(), Drug.id).limit(QUERY_LIMIT).all()
        ],
        "critical_stock": lambda: [
            _drug_row(d)
            for d in q.filter(Drug.stock < CRITICAL_STOCK_THRESHOLD).order_by(Drug.stock.asc(), Drug.id)
            .limit(QUERY_LIMIT).all()
        ],
    }


def _admin_queries(db: Session, user: User, today: date, analysis: QuestionAnalysis) -> Dict[str, Callable]:
    drugs = _drugs(db, None, today, analysis)
    pending_order_ids = select(OrderItem.order_id).where(OrderItem.status == ITEM_PENDING)
    return {
        "drugs": drugs["drugs"],
        "institutes": lambda: [
            _user_row(u) for u in db.query(User).filter(func.lower(User.role) == ROLE_INSTITUTE)
            .order_by(User.name).limit(QUERY_LIMIT).all()
        ],
        "orders": lambda: [
            _order_row(o) for o in db.query(Order).order_by(Order.created_at.desc(), Order.id.desc())
            .limit(QUERY_LIMIT).all()
        ],
        "expiring_soon": drugs["expiring_soon"],
        "critical_stock": drugs["critical_stock"],
        "users": lambda: [_user_row(u) for u in db.query(User).order_by(User.id).limit(QUERY_LIMIT).all()],
        "pending_orders": lambda: [
            _order_row(o) for o in db.query(Order).filter(Order.id.in_(pending_order_ids))
            .order_by(Order.created_at.desc(), Order.id.desc()).limit(QUERY_LIMIT).all()
        ],
    }


def _institute_queries(db: Session, user: User, today: date, analysis: QuestionAnalysis) -> Dict[str, Callable]:
    drugs = _drugs(db, user.id, today, analysis)
    selling = select(OrderItem.order_id).where(OrderItem.seller_id == user.id)
    incoming = db.query(Order).filter(or_(Order.recipient_id == user.id, Order.id.in_(selling)))
    my_items = db.query(OrderItem).filter(OrderItem.seller_id == user.id)
    return {
        "drugs": drugs["drugs"],
        "orders": lambda: [
            _order_row(o) for o in incoming.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(QUERY_LIMIT).all()
        ],
        "order_items": lambda: [
            _item_row(i) for i in my_items.order_by(OrderItem.created_at.desc(), OrderItem.id.desc())
            .limit(QUERY_LIMIT).all()
        ],
        "expiring_soon": drugs["expiring_soon"],
        "pending_approvals": lambda: [
            _item_row(i) for i in my_items.filter(OrderItem.status == ITEM_PENDING)
            .order_by(OrderItem.id).limit(QUERY_LIMIT).all()
        ],
    }


def _pharmacy_queries(db: Session, user: User, today: date, analysis: QuestionAnalysis) -> Dict[str, Callable]:
    drugs = _drugs(db, user.id, today, analysis)
    outgoing = db.query(Order).filter(Order.user_id == user.id)
    pending_order_ids = (
        select(OrderItem.order_id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.user_id == user.id, OrderItem.status == ITEM_PENDING)
    )
    return {
        "orders": lambda: [
            _order_row(o) for o in outgoing.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(QUERY_LIMIT).all()
        ],
        "order_items": lambda: [
            _item_row(i) for i in db.query(OrderItem).join(Order, Order.id == OrderItem.order_id)
            .filter(Order.user_id == user.id)
            .order_by(OrderItem.created_at.desc(), OrderItem.id.desc()).limit(QUERY_LIMIT).all()
        ],
        "inventory": drugs["drugs"],
        "pending_orders": lambda: [
            _order_row(o) for o in outgoing.filter(Order.id.in_(pending_order_ids))
            .order_by(Order.created_at.desc(), Order.id.desc()).limit(QUERY_LIMIT).all()
        ],
        "expiring_soon": drugs["expiring_soon"],
    }


ROLE_QUERIES = {
    ROLE_ADMIN: _admin_queries,
    ROLE_INSTITUTE: _institute_queries,
    ROLE_PHARMACY: _pharmacy_queries,
}

# which sections each keyword flag asks for
TOPIC_SECTIONS = {
    "mentions_drugs": ("drugs", "inventory", "critical_stock"),
    "mentions_expiration": ("expiring_soon",),
    "mentions_orders": ("orders", "order_items"),
    "is_asking_status": ("pending_orders", "pending_approvals"),
    "mentions_users": ("users", "institutes"),
}


def select_sections(analysis: QuestionAnalysis, available: List[str]) -> List[str]:
    """Sections matching the question's topics; every section when nothing matches."""
    wanted = set()
    for flag, sections in TOPIC_SECTIONS.items():
        if getattr(analysis, flag):
            wanted.update(sections)
    chosen = [name for name in available if name in wanted]
    return chosen or list(available)


def _counts(db: Session, user: User, role: str, today: date, analysis: QuestionAnalysis) -> dict:
    drugs = db.query(Drug)
    items = db.query(OrderItem)
    if role == ROLE_INSTITUTE:
        drugs = drugs.filter(Drug.created_by == user.id)
        items = items.filter(OrderItem.seller_id == user.id)
    elif role == ROLE_PHARMACY:
        drugs = drugs.filter(Drug.created_by == user.id)
        items = items.join(Order, Order.id == OrderItem.order_id).filter(Order.user_id == user.id)
    window_end = today + timedelta(days=analysis.expiry_window_days)
    return {
        "total_drugs": drugs.count(),
        "low_stock_drugs": drugs.filter(Drug.stock < LOW_STOCK_THRESHOLD).count(),
        "expiring_soon": drugs.filter(Drug.exp_date >= today, Drug.exp_date <= window_end).count(),
        "total_order_items": items.count(),
        "pending_order_items": items.filter(OrderItem.status == ITEM_PENDING).count(),
    }


def run_predefined_queries(db: Session, user: User, analysis: QuestionAnalysis) -> dict:
    """Role-scoped data for the question. Individual query failures yield empty lists."""
    role = role_of(user)
    build = ROLE_QUERIES.get(role)
    if build is None:
        return {}

    today = date.today()
    data: Dict[str, Any] = {}
    try:
        _set_statement_timeout(db)
        queries = build(db, user, today, analysis)
        for name in select_sections(analysis, list(queries)):
            data[name] = _safe(db, name, queries[name])
        if analysis.is_counting:
            data["counts"] = _safe(db, "counts", lambda: _counts(db, user, role, today, analysis)) or {}
    finally:
        db.rollback()
    return data


# ==============================================================================
# REPLY
# ==============================================================================

def compose_reply(query: str, role: str, history: List[ChatMessage], data: Any) -> str:
    """
    LLM reply from `data` only, passed through the reply guard.

    Raises:
        UpstreamUnavailableError: the LLM is unavailable or returned nothing
    """
    client = get_groq_client()
    messages = [{"role": "system", "content": system_prompt_for(role)}]
    messages.extend({"role": m.role, "content": m.content} for m in history[-HISTORY_LIMIT:])
    messages.append({"role": "user", "content": build_data_prompt(query, data)})

    reply = client.complete(messages, temperature=0.1, max_tokens=1000)
    if not reply:
        raise UpstreamUnavailableError("Text generation service unavailable")
    return guard_reply(reply.strip(), data)


def handle_query(db: Session, user: User, query: str, history: Optional[List[ChatMessage]] = None) -> dict:
    question = (query or "").strip()
    if not question:
        raise ValidationError("Query is required")

    role = role_of(user)
    user_id = user.id
    history = history or []
    analysis = QuestionAnalysis.from_question(question)
    started = time.monotonic()

    data: Any = None
    source = "predefined"
    if role in {r.lower() for r in settings.CHATBOT_DYNAMIC_SQL_ROLES}:
        sql = generate_validated_sql(question, role, user_id)
        if sql:
            rows = run_dynamic_sql(db, sql)
            if rows:
                data, source = rows, "dynamic_sql"

    if data is None:
        data = run_predefined_queries(db, user, analysis)

    try:
        reply = compose_reply(question, role, history, data)
        writer = "llm"
    except UpstreamUnavailableError as e:
        logger.warning(f"{e.message}; formatting reply locally")
        reply = format_response(data, role, question)
        writer = "formatter"

    logger.info(
        f"Chatbot reply for user {user_id} ({role}): data={source} writer={writer} "
        f"in {(time.monotonic() - started) * 1000:.0f}ms"
    )
    now = datetime.now(timezone.utc)
    return {
        "reply": reply,
        "conversation_id": int(now.timestamp() * 1000),
        "timestamp": now.isoformat(),
    }
