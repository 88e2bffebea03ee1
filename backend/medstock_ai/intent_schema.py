"""Structured views of a chatbot question and of a generated-SQL check.

QuestionAnalysis is derived by keyword rules only; it decides which
predefined queries run. SQLValidationResult is what the allow-list validator
returns for a generated statement.
"""

import re
from typing import List, Optional
from pydantic import BaseModel, Field

DEFAULT_EXPIRY_MONTHS = 3

_PATTERNS = {
    "mentions_drugs": re.compile(r"drug|medicine|inventory|stock|batch|tablet|syrup|capsule", re.IGNORECASE),
    "mentions_orders": re.compile(r"order|purchase|delivery|shipment|transaction", re.IGNORECASE),
    "mentions_expiration": re.compile(r"expir|expiry|exp date|mfg|manufactur|shelf life", re.IGNORECASE),
    "mentions_category": re.compile(r"\b(IPD|OPD|OUTREACH)\b|category|type", re.IGNORECASE),
    "mentions_users": re.compile(r"user|admin|institute|pharmacy|created by", re.IGNORECASE),
    "is_counting": re.compile(r"count|how many|number of", re.IGNORECASE),
    "is_asking_status": re.compile(r"status|state|progress|pending", re.IGNORECASE),
    "is_asking_details": re.compile(r"detail|info|information|about", re.IGNORECASE),
}
_MONTHS = re.compile(r"(\d+)\s*months?", re.IGNORECASE)
_DAYS = re.compile(r"(\d+)\s*days?", re.IGNORECASE)


class QuestionAnalysis(BaseModel):
    """Keyword analysis of a user question."""
    mentions_drugs: bool = False
    mentions_orders: bool = False
    mentions_expiration: bool = False
    mentions_category: bool = False
    mentions_users: bool = False
    is_counting: bool = False
    is_asking_status: bool = False
    is_asking_details: bool = False
    # expiry look-ahead requested in the question, in days
    time_period_days: Optional[int] = None

    @classmethod
    def from_question(cls, question: str) -> "QuestionAnalysis":
        flags = {name: bool(pattern.search(question)) for name, pattern in _PATTERNS.items()}
        period = None
        months = _MONTHS.search(question)
        if months:
            period = int(months.group(1)) * 30
        else:
            days = _DAYS.search(question)
            if days:
                period = int(days.group(1))
        return cls(time_period_days=period, **flags)

    @property
    def expiry_window_days(self) -> int:
        return self.time_period_days or DEFAULT_EXPIRY_MONTHS * 30


class SQLValidationResult(BaseModel):
    """Outcome of the allow-list check. The query is never rewritten."""
    is_valid: bool
    reason: Optional[str] = None
    invalid_tokens: List[str] = Field(default_factory=list)
