"""AI Module for the chatbot.

This module provides OPTIONAL language help using Groq's LLM:
text-to-SQL (validated against an allow-list) and reply composition.
It never writes to the database.

If the LLM fails, replies come from the deterministic Markdown formatter.
"""

from .fallback import format_response, guard_reply
from .sql_generator import generate_validated_sql
from .sql_validator import validate_sql

__all__ = ["format_response", "guard_reply", "generate_validated_sql", "validate_sql"]
