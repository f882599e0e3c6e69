#!/usr/bin/env python3
"""
Create an ExamCoach admin account from the command line.

Writes directly to the configured identity store, so it works before any
admin exists (no bearer token needed).

Usage:
    examcoach-create-admin +2348012345678 "Ada Obi" ada@examcoach.app
    examcoach-create-admin 08012345678 "Ada Obi" ada@examcoach.app --role super-admin

The password is prompted for unless --password is given.
"""

import argparse
import asyncio
import getpass
import sys
from typing import List, Optional

from accounts.admin import AdminService
from accounts.errors import AccountError
from accounts.identity_store import IdentityStore, create_identity_store
from accounts.models import Account, Role
from config import Settings
from utils.logger import mask_phone, setup_logging


async def create_admin(
    store: IdentityStore,
    settings: Settings,
    phone: str,
    full_name: str,
    email: str,
    password: str,
    role: Role = Role.ADMIN,
) -> Account:
    admin_service = AdminService(
        store,
        default_country_code=settings.DEFAULT_COUNTRY_CODE,
        password_iterations=settings.PASSWORD_HASH_ITERATIONS,
    )
    try:
        return await admin_service.create_admin_user(phone, full_name, email, password, role=role)
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Create an ExamCoach admin account")
    parser.add_argument("phone", help="Phone number (national numbers use DEFAULT_COUNTRY_CODE)")
    parser.add_argument("full_name", help="Admin's full name")
    parser.add_argument("email", help="Admin's email address")
    parser.add_argument(
        "--password", "-p",
        default=None,
        help="Password (prompted for if omitted)"
    )
    parser.add_argument(
        "--role", "-r",
        default=Role.ADMIN.value,
        choices=[Role.ADMIN.value, Role.SUPER_ADMIN.value],
        help="Admin role (default: admin)"
    )

    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    password = args.password
    if not password:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("ERROR: Passwords do not match")
            sys.exit(1)

    try:
        admin = asyncio.run(create_admin(
            create_identity_store(settings),
            settings,
            args.phone,
            args.full_name,
            args.email,
            password,
            role=Role(args.role),
        ))
    except AccountError as e:
        print(f"ERROR: {e.user_message}")
        sys.exit(1)

    print(f"Admin created: {admin.id}")
    print(f"  Phone: {mask_phone(admin.phone_number)}")
    print(f"  Role: {admin.role.value}")


if __name__ == "__main__":
    main()
