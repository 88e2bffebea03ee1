"""Seed a development database with users, a drug taxonomy, drugs and one institute order.

Run from backend/: python seed_inventory.py
Passwords for the seeded accounts are printed once.
"""
import secrets
from datetime import date, timedelta
from decimal import Decimal

from medstock.core.security import get_password_hash
from medstock.db.init_db import init_db
from medstock.db.session import SessionLocal
from medstock.models import Drug, Order, OrderItem, User
from medstock.services import catalog_service, inventory_service

ACCOUNTS = [
    ("City Hospital", "institute@medstock.local", "institute"),
    ("Care Pharmacy", "pharmacy@medstock.local", "pharmacy"),
]

# (drug_type, name, batch_no, stock, price, days_to_expiry)
MEDICINES = [
    ("Tablet", "Paracetamol 500mg", "PCM-2401", 200, "2.50", 400),
    ("Tablet", "Amoxicillin 250mg", "AMX-2402", 120, "6.00", 60),
    ("Tablet", "Metformin 500mg", "MET-2403", 12, "3.20", 300),
    ("Syrup", "Cough Syrup 100ml", "CSY-2404", 40, "45.00", 20),
    ("Injection", "Insulin Glargine", "INS-2405", 4, "650.00", 120),
    ("Capsule", "Omeprazole 20mg", "OMP-2406", 600, "4.10", 500),
]


def seed():
    init_db()
    db = SessionLocal()
    try:
        users = {}
        for name, email, role in ACCOUNTS:
            user = db.query(User).filter(User.email == email).first()
            if not user:
                password = secrets.token_urlsafe(12)
                user = User(name=name, email=email, role=role, hashed_password=get_password_hash(password))
                db.add(user)
                db.flush()
                print(f"✅ Created {role}: {email} / {password}")
            users[role] = user

        institute = users["institute"]
        drugs = []
        for drug_type, name, batch_no, stock, price, days in MEDICINES:
            existing = db.query(Drug).filter(Drug.name == name, Drug.batch_no == batch_no).first()
            if existing:
                drugs.append(existing)
                continue
            type_row, _ = catalog_service.get_or_create_type(db, drug_type)
            catalog_service.get_or_create_name(db, type_row, name)
            drug = Drug(
                drug_type=drug_type,
                name=name,
                batch_no=batch_no,
                stock=0,
                price=Decimal(price),
                mfg_date=date.today() - timedelta(days=180),
                exp_date=date.today() + timedelta(days=days),
                created_by=institute.id,
            )
            db.add(drug)
            db.flush()
            inventory_service.set_stock(db, drug, stock, "seed", f"drug:{drug.id}")
            drugs.append(drug)

        if not db.query(Order).filter(Order.order_no == "ORD-SEED-0001").first():
            order = Order(order_no="ORD-SEED-0001", user_id=users["pharmacy"].id, transaction_type="institute")
            db.add(order)
            db.flush()
            total = Decimal("0")
            for drug, quantity in ((drugs[0], 20), (drugs[3], 10), (drugs[4], 6)):
                line_total = drug.price * quantity
                db.add(OrderItem(
                    order_id=order.id,
                    drug_id=drug.id,
                    quantity=quantity,
                    unit_price=drug.price,
                    total_price=line_total,
                    batch_no=drug.batch_no,
                    seller_id=institute.id,
                ))
                total += line_total
            order.total_amount = total
            print(f"✅ Created order {order.order_no} with 3 pending items")

        db.commit()
        print(f"✅ Seeded {len(drugs)} drugs")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
