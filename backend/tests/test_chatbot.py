"""Chatbot: dynamic SQL for admins, predefined queries, LLM reply guard, Markdown fallback."""
from types import SimpleNamespace

from medstock.models import Drug
from medstock.services import chatbot_service
from medstock_ai.fallback import HEDGING_REPLY, NO_DATA_REPLY, format_response, guard_reply

from conftest import auth, make_drug, make_order


def _ask(client, user, query, history=None):
    return client.post(
        "/chatbot",
        json={"query": query, "conversation_history": history or []},
        headers=auth(user),
    )


def test_empty_query_is_validation_error(client, institute):
    resp = _ask(client, institute, "   ")

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION"
    assert resp.json()["message"] == "Query is required"


def test_requires_authentication(client):
    resp = client.post("/chatbot", json={"query": "hello"})

    assert resp.status_code == 401


def test_formatter_answers_when_llm_unavailable(client, db, institute):
    make_drug(db, institute, name="Paracetamol", stock=3)

    resp = _ask(client, institute, "show my drug stock")

    assert resp.status_code == 200
    body = resp.json()
    assert "Drug Inventory" in body["reply"]
    assert "Paracetamol" in body["reply"]
    assert "Critical" in body["reply"]
    assert isinstance(body["conversation_id"], int)
    assert body["timestamp"]


def test_counting_question_adds_summary(client, db, institute):
    make_drug(db, institute, name="Paracetamol", stock=3)

    reply = _ask(client, institute, "how many drugs do I have").json()["reply"]

    assert "Summary" in reply
    assert "**Total Drugs:** 1" in reply


def test_predefined_queries_are_role_scoped(client, db, institute, other_institute):
    make_drug(db, institute, name="Mine")
    make_drug(db, other_institute, name="Theirs")

    reply = _ask(client, institute, "list drugs").json()["reply"]

    assert "Mine" in reply
    assert "Theirs" not in reply


def test_llm_reply_uses_history_and_data(client, db, fake_llm, institute):
    make_drug(db, institute, name="Paracetamol", stock=100)
    fake = fake_llm(replies=["You have 100 units of Paracetamol."])
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    resp = _ask(client, institute, "how much paracetamol stock", history)

    assert resp.json()["reply"] == "You have 100 units of Paracetamol."
    messages = fake.calls[0]
    assert messages[0]["role"] == "system"
    assert messages[1:3] == history
    assert "Paracetamol" in messages[-1]["content"]


def test_hedging_reply_is_replaced(client, db, fake_llm, institute):
    make_drug(db, institute, name="Paracetamol")
    fake_llm(replies=["You probably have enough stock."])

    reply = _ask(client, institute, "do I have enough stock").json()["reply"]

    assert reply == HEDGING_REPLY


def test_reply_without_data_is_replaced(client, db, fake_llm, pharmacy):
    fake_llm(replies=["You have 50 units of Aspirin."])

    reply = _ask(client, pharmacy, "list my inventory").json()["reply"]

    assert reply == NO_DATA_REPLY


def test_admin_dynamic_sql(client, db, fake_llm, admin, institute):
    make_drug(db, institute, name="Paracetamol", stock=42)
    fake = fake_llm(replies=["```sql\nSELECT name, stock FROM drugs LIMIT 20;\n```", "Paracetamol: 42 units."])

    reply = _ask(client, admin, "what is the stock of every drug").json()["reply"]

    assert reply == "Paracetamol: 42 units."
    data_prompt = fake.calls[1][-1]["content"]
    assert '"stock": 42' in data_prompt


def test_admin_rejected_sql_falls_back_to_predefined(client, db, fake_llm, admin, institute):
    make_drug(db, institute, name="Paracetamol", stock=42)
    fake_llm(replies=["DELETE FROM drugs"])

    reply = _ask(client, admin, "show drugs").json()["reply"]

    assert "Drug Inventory" in reply
    assert "Paracetamol" in reply
    assert db.query(Drug).count() == 1


def test_non_admin_never_gets_dynamic_sql(client, db, fake_llm, institute):
    make_drug(db, institute, name="Paracetamol")
    fake = fake_llm(replies=["SELECT name FROM drugs", "ok"])

    _ask(client, institute, "list drugs")

    # the only call is reply composition
    assert len(fake.calls) == 1
    assert fake.calls[0][0]["role"] == "system"


def test_orders_section_for_institute(client, db, institute, pharmacy):
    drug = make_drug(db, institute)
    make_order(db, pharmacy, institute, [(drug, 2, "1.00")], order_no="ORD-77")

    reply = _ask(client, institute, "show my orders").json()["reply"]

    assert "Incoming Orders" in reply
    assert "ORD-77" in reply


def test_unexpected_error_returns_apology(client, institute, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(chatbot_service, "run_predefined_queries", boom)

    resp = _ask(client, institute, "show drugs")

    assert resp.status_code == 500
    assert resp.json()["detail"]["message"] == chatbot_service.APOLOGY_REPLY


def test_guard_reply_keeps_grounded_answers():
    data = {"drugs": [{"name": "Paracetamol", "stock": 10}]}

    assert guard_reply("Paracetamol has 10 units.", data) == "Paracetamol has 10 units."
    assert guard_reply("No data available for that.", {"drugs": []}) == "No data available for that."
    assert guard_reply("There are 10 units.", {"drugs": []}) == NO_DATA_REPLY


def test_format_response_generic_rows_are_capped():
    rows = [{"order_no": f"ORD-{i}", "drug_name": "X", "qty": i} for i in range(12)]

    reply = format_response(rows, "admin")

    assert "ORD-9" in reply
    assert "ORD-10" not in reply
    assert "Showing 10 of 12 rows" in reply


def test_format_response_stock_levels():
    rows = [
        {"name": "A", "stock": 2},
        {"name": "B", "stock": 10},
        {"name": "C", "stock": 100},
        {"name": "D", "stock": 900},
    ]

    reply = format_response(rows, "admin")

    assert "Critical" in reply
    assert "Low" in reply
    assert "OK" in reply
    assert "High" in reply


def test_format_response_without_data():
    assert format_response([], "admin") == NO_DATA_REPLY
    assert format_response({"drugs": [], "orders": []}, "institute") == NO_DATA_REPLY


class _PostgresSession:
    """Records statements instead of talking to PostgreSQL."""

    def __init__(self):
        self.statements = []
        self.rolled_back = False

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))

    def execute(self, statement):
        self.statements.append(str(statement))
        return SimpleNamespace(mappings=lambda: SimpleNamespace(fetchmany=lambda n: []))

    def rollback(self):
        self.rolled_back = True


def test_dynamic_sql_runs_in_read_only_transaction():
    session = _PostgresSession()

    rows = chatbot_service.run_dynamic_sql(session, "SELECT name FROM drugs LIMIT 20")

    assert rows == []
    assert session.statements[0] == "SET TRANSACTION READ ONLY"
    assert session.statements[1].startswith("SET LOCAL statement_timeout")
    assert session.statements[2] == "SELECT name FROM drugs LIMIT 20"
    assert session.rolled_back
