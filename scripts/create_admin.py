#!/usr/bin/env python3
"""
Script to create an admin (or librarian) user.
"""
import getpass
import sys
from pathlib import Path

# Add parent directory to the system path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import HTTPException

from database.connection import Database
from database.models import UserRole
from services.auth_service import AuthService
import config


def create_admin():
    """Create an admin user."""
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    config.db.create_tables()

    print("Creating admin user...")
    print("=" * 50)

    first_name = input("First name: ").strip()
    last_name = input("Last name: ").strip()
    email = input("Email: ").strip()
    password = getpass.getpass("Password: ").strip()
    role_name = input("Role [admin/librarian] (default admin): ").strip().lower() or "admin"

    if not first_name or not last_name or not email or not password:
        print("Error: First name, last name, email, and password are required")
        sys.exit(1)
    if role_name not in ("admin", "librarian"):
        print("Error: Role must be admin or librarian")
        sys.exit(1)

    try:
        with config.db.get_session() as db:
            user = AuthService.create_user(
                db=db,
                first_name=first_name,
                last_name=last_name,
                email=email,
                password=password,
                role=UserRole(role_name),
            )
            print(f"\n✓ {user.role.value.capitalize()} user created successfully!")
            print(f"  Name: {user.first_name} {user.last_name}")
            print(f"  Email: {user.email}")
            print(f"  Role: {user.role.value}")
    except HTTPException as e:
        print(f"\n✗ Error: {e.detail}")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    create_admin()
