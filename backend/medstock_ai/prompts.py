"""
Prompts for the chatbot.

Two uses of the text model, both constrained:
1. SQL generation (admin only): one SELECT against the exact schema below.
   The output is still checked by sql_validator before it reaches the database.
2. Reply composition: answer ONLY from the data context we pass in. The reply
   is checked again by fallback.guard_reply.
"""

import json
from typing import Any, List

SCHEMA_DESCRIPTION = """
Tables and columns:

users(id, name, email, phone, street, city, state, postal_code, country,
      status, registration_date, license_number, role, created_by, created_at, updated_at)

drugs(id, drug_type, name, batch_no, description, stock, mfg_date, exp_date, price,
      created_by, category, created_at, updated_at)

orders(id, order_no, user_id, recipient_id, transaction_type, notes, total_amount,
       created_at, updated_at)

order_items(id, order_id, drug_id, custom_name, manufacturer_name, quantity, unit_price, total_price,
            source_type, category, batch_no, seller_id, status, reserved_quantity, created_at, updated_at)

daily_dispensing_summary(id, drug_id, quantity_dispensed, dispensing_date, category, notes,
                         recorded_by, created_at, updated_at)

drug_types(id, type_name, created_at, updated_at)

drug_names(id, type_id, name, created_at, updated_at)
"""

EXACT_SCHEMA = """
EXACT TABLE STRUCTURE:
users(id, name, email, role, status)
drugs(id, name, batch_no, stock, exp_date, price, category, created_by)
orders(id, order_no, user_id, recipient_id, total_amount, created_at)
order_items(id, order_id, drug_id, quantity, unit_price, status, seller_id)
daily_dispensing_summary(id, drug_id, quantity_dispensed, dispensing_date, category)

KEY RELATIONSHIPS:
- drugs.created_by = users.id
- orders.user_id = users.id
- orders.recipient_id = users.id
- order_items.order_id = orders.id
- order_items.drug_id = drugs.id
- daily_dispensing_summary.drug_id = drugs.id

NOTE: All primary keys are named 'id', not 'drug_id', 'order_id', etc.
"""

# ==============================================================================
# SYSTEM PROMPTS (one per role)
# ==============================================================================

SYSTEM_PROMPTS = {
    "admin": f"""You are a strict data assistant for a Drug Management System. CRITICAL RULES:

DATA CONSTRAINTS:
- ONLY use data provided in the context below
- NEVER invent, assume, or hallucinate any values
- If data is missing, say "Data not available" for that field
- If no records match, say "No matching records found"

RESPONSE RULES:
- Base ALL responses ONLY on the provided database results
- Use exact values from the data, do not estimate or approximate
- If context is empty or insufficient, respond: "I don't have enough data to answer that question accurately"
- For calculations, only use provided numbers

FORMATTING:
- Use clear Markdown tables and sections
- Highlight critical info (low stock, expiring soon)
- Be concise and data-focused

Current database schema available: {SCHEMA_DESCRIPTION}""",

    "institute": """You are a pharmaceutical institute assistant. STRICT RULES:

- ONLY reference data provided in the context
- NEVER invent drug names, batch numbers, or quantities
- If data is incomplete, acknowledge the limitation
- Use exact values from query results
- Use Markdown tables for lists

Respond based SOLELY on the database results provided.""",

    "pharmacy": """You are a pharmacy data assistant. IMPORTANT:

- All responses must be grounded in the provided data context
- Do not make up stock levels, orders, dispensing figures or expiration dates
- If the data doesn't contain the answer, say so clearly
- Use only the exact values from database results""",
}


def system_prompt_for(role: str) -> str:
    return SYSTEM_PROMPTS.get((role or "").lower(), SYSTEM_PROMPTS["institute"])


def build_sql_prompt(question: str, role: str, forbidden: List[str]) -> str:
    """Prompt asking for one SELECT statement using only the exact schema."""
    return f"""Generate a SAFE PostgreSQL SELECT query ONLY using EXACT column names from the schema.
STRICT RULES:
1. ONLY generate SELECT queries
2. Use EXACT column names from the schema below - do not guess or invent column names
3. NEVER include: {', '.join(k.upper() for k in forbidden)}
4. Return ONLY the SQL, no explanations, no markdown
5. Always include LIMIT 20 for safety
6. Use correct JOIN conditions based on the exact relationships provided
7. Always wrap string literals in single quotes; never use $1-style placeholders
8. Name the columns you need from users; never SELECT * or u.* over the users table

EXACT SCHEMA: {EXACT_SCHEMA}

User Role: {role}
Question: {question}

SQL:"""


def build_data_prompt(question: str, data: Any) -> str:
    """User turn carrying the question and the database results it must be answered from."""
    context = json.dumps(data, indent=2, default=str)
    return f"""USER QUESTION: "{question}"

AVAILABLE DATA CONTEXT:
{context}

STRICT INSTRUCTIONS:
- Answer ONLY using the data above
- If data is empty/missing, say "No data available"
- Never invent or assume values
- Be precise and factual"""
