"""
Text-to-SQL for the chatbot.

The model is asked for one SELECT; whatever comes back is cleaned of
markdown fences and run through the allow-list validator. Anything that
fails either step yields None and the caller uses the predefined queries.
"""

import logging
import re
from typing import Optional

from medstock.core.audit import AuditLog

from .groq_client import get_groq_client
from .prompts import build_sql_prompt
from .sql_validator import FORBIDDEN_KEYWORDS, validate_sql

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:sql)?\s*|\s*```$", re.IGNORECASE)


def clean_sql(raw: str) -> str:
    text = _FENCE.sub("", raw.strip()).strip()
    # models sometimes prefix the statement with "SQL:"
    if text.lower().startswith("sql:"):
        text = text[4:].strip()
    return text.rstrip(";").strip()


def generate_validated_sql(question: str, role: str, user_id: Optional[int] = None) -> Optional[str]:
    """
    Ask the model for a SELECT answering `question` and validate it.

    Returns:
        The validated statement, or None if the model is unavailable or the
        statement fails validation.
    """
    client = get_groq_client()
    if not client.is_available():
        return None

    prompt = build_sql_prompt(question, role, list(FORBIDDEN_KEYWORDS))
    raw = client.complete([{"role": "user", "content": prompt}], temperature=0, max_tokens=500)
    if not raw:
        return None

    sql = clean_sql(raw)
    result = validate_sql(sql)
    if not result.is_valid:
        AuditLog.log_sql_rejected(user_id, result.reason, result.invalid_tokens)
        logger.warning(f"Generated SQL rejected: {result.reason}")
        return None

    logger.debug(f"Generated SQL accepted: {sql[:120]}")
    return sql
