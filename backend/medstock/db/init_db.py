"""Create all tables. Run on app startup.

SECURITY: The first admin gets a random password (not hardcoded), printed once.
Change it after first login.
"""
import secrets

from medstock.core.config import settings
from medstock.core.permissions import ROLE_ADMIN
from medstock.core.security import get_password_hash
from medstock.db.base import Base
from medstock.db.session import engine, SessionLocal
from medstock import models  # noqa: F401 - register models
from medstock.models.user import User


def init_db():
    Base.metadata.create_all(bind=engine)

    # Create default admin user if no users exist
    db = SessionLocal()
    try:
        if db.query(User).count() == 0:
            default_password = secrets.token_urlsafe(16)
            db.add(User(
                name="Administrator",
                email=settings.DEFAULT_ADMIN_EMAIL,
                hashed_password=get_password_hash(default_password),
                role=ROLE_ADMIN,
            ))
            db.commit()

            print("\n" + "=" * 70)
            print("⚠️  DEFAULT ADMIN USER CREATED")
            print("=" * 70)
            print(f"Email:    {settings.DEFAULT_ADMIN_EMAIL}")
            print(f"Password: {default_password}")
            print("\n🔐 SECURITY: Change this password immediately after first login!")
            print("=" * 70 + "\n")
    finally:
        db.close()
