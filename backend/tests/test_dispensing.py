"""Daily dispensing: record/upsert, delete, CSV import, listings."""
from datetime import date, timedelta

from medstock.models import DailyDispensingSummary, Drug

from conftest import auth, make_drug


def _record(client, user, **body):
    return client.post("/daily-dispensing", json=body, headers=auth(user))


def test_record_decrements_stock(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, category="opd")

    assert resp.status_code == 200
    body = resp.json()
    assert body["updated_stock"] == 25
    assert body["dispensing"]["category"] == "OPD"
    assert body["dispensing"]["dispensing_date"] == date.today().isoformat()


def test_second_entry_same_day_applies_only_the_difference(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=8, notes="evening")

    assert resp.status_code == 200
    assert resp.json()["updated_stock"] == 22
    assert resp.json()["message"] == "Dispensing record updated successfully"
    rows = db.query(DailyDispensingSummary).filter(DailyDispensingSummary.drug_id == drug.id).all()
    assert len(rows) == 1
    assert rows[0].quantity_dispensed == 8


def test_resubmitting_same_quantity_leaves_stock_unchanged(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, notes="recount")

    assert resp.status_code == 200
    assert resp.json()["updated_stock"] == 25
    db.expire_all()
    assert db.get(Drug, drug.id).stock == 25
    rows = db.query(DailyDispensingSummary).filter(DailyDispensingSummary.drug_id == drug.id).all()
    assert len(rows) == 1
    assert rows[0].notes == "recount"


def test_lowering_quantity_gives_stock_back(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=10)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=4)

    assert resp.json()["updated_stock"] == 26


def test_categories_are_separate_rows(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, category="OPD")

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, category="IPD")

    assert resp.json()["updated_stock"] == 20
    assert db.query(DailyDispensingSummary).count() == 2


def test_other_date_is_refused(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    yesterday = (date.today() - timedelta(days=1)).isoformat()

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, dispensing_date=yesterday)

    assert resp.status_code == 400
    assert resp.json()["code"] == "ONLY_TODAY_ALLOWED"


def test_insufficient_stock(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=3)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5)

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["message"] == "Insufficient stock. Available: 3, Trying to dispense: 5"
    db.expire_all()
    assert db.get(Drug, drug.id).stock == 3


def test_invalid_category_and_quantity(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)

    bad_category = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5, category="ER")
    bad_quantity = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=0)

    assert bad_category.status_code == 400
    assert bad_category.json()["code"] == "VALIDATION"
    assert bad_quantity.status_code == 400


def test_drug_of_another_user_is_not_found(client, db, pharmacy, institute):
    drug = make_drug(db, institute, stock=30)

    resp = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=5)

    assert resp.status_code == 404


def test_only_pharmacy_can_dispense(client, db, institute):
    drug = make_drug(db, institute, stock=30)

    resp = _record(client, institute, drug_id=drug.id, quantity_dispensed=5)

    assert resp.status_code == 403


def test_delete_restores_stock(client, db, pharmacy):
    drug = make_drug(db, pharmacy, stock=30)
    record_id = _record(client, pharmacy, drug_id=drug.id, quantity_dispensed=12).json()["dispensing"]["id"]

    resp = client.delete(f"/daily-dispensing/{record_id}", headers=auth(pharmacy))

    assert resp.status_code == 200
    assert resp.json()["updated_stock"] == 30
    assert db.query(DailyDispensingSummary).count() == 0


def test_delete_unknown_record(client, db, pharmacy):
    resp = client.delete("/daily-dispensing/9999", headers=auth(pharmacy))

    assert resp.status_code == 404
    assert resp.json()["message"] == "Record not found"


def test_csv_import_partial_success(client, db, pharmacy):
    make_drug(db, pharmacy, name="Paracetamol", stock=50, batch_no="P-1")
    make_drug(db, pharmacy, name="Ibuprofen", stock=2, batch_no="I-1")
    csv_text = (
        "drug_name,quantity_dispensed,notes\n"
        "paracetamol,10,morning\n"
        "Ibuprofen,5,\n"
        "Unknown Drug,1,\n"
        "Paracetamol,abc,\n"
        ",3,\n"
    )

    resp = client.post(
        "/daily-dispensing/importcsv",
        files={"file": ("dispensing.csv", csv_text.encode(), "text/csv")},
        data={"category": "IPD"},
        headers=auth(pharmacy),
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["imported"] == 1
    assert body["total"] == 5
    assert len(body["errors"]) == 4
    assert body["errors"][0].startswith("Row 2: Insufficient stock")
    assert body["errors"][1] == "Row 3: Drug 'Unknown Drug' not found in your inventory"
    assert body["errors"][2] == "Row 4: Invalid quantity 'abc'"
    assert body["errors"][3].startswith("Row 5: Missing required fields")
    record = db.query(DailyDispensingSummary).one()
    assert record.category == "IPD"
    assert record.quantity_dispensed == 10


def test_csv_import_without_file(client, pharmacy):
    resp = client.post("/daily-dispensing/importcsv", data={"category": "OPD"}, headers=auth(pharmacy))

    assert resp.status_code == 400
    assert resp.json()["message"] == "No CSV file uploaded"


def test_today_and_summary(client, db, pharmacy):
    a = make_drug(db, pharmacy, name="Paracetamol", stock=50, batch_no="P-1")
    b = make_drug(db, pharmacy, name="Cetirizine", stock=50, batch_no="C-1")
    _record(client, pharmacy, drug_id=a.id, quantity_dispensed=4)
    _record(client, pharmacy, drug_id=b.id, quantity_dispensed=6)
    _record(client, pharmacy, drug_id=b.id, quantity_dispensed=1, category="OUTREACH")

    today = client.get("/daily-dispensing/today", headers=auth(pharmacy)).json()
    summary = client.get(
        f"/daily-dispensing/summary?start_date={date.today().isoformat()}", headers=auth(pharmacy)
    ).json()
    listing = client.get("/daily-dispensing?date=today&category=opd", headers=auth(pharmacy)).json()

    assert today["summary"]["total_dispensed"] == 11
    assert today["summary"]["total_drugs"] == 3
    totals = {row["category"]: row["total_quantity"] for row in summary["summary"]}
    assert totals == {"OPD": 10, "OUTREACH": 1}
    assert listing["pagination"]["total"] == 2
    assert [r["drug_name"] for r in listing["records"]] == ["Cetirizine", "Paracetamol"]
