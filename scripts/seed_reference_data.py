"""
Seed reference data: approver roles, departments and the default approval chain.

Usage:
    python scripts/seed_reference_data.py                   # Uses development DB
    python scripts/seed_reference_data.py --env production  # Uses production DB

This script is idempotent: rows are matched by key/code and only missing
ones are inserted.  Approval levels are seeded only when the table is empty,
so an administrator's later reordering is never overwritten.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mocflow import create_app
from mocflow.models import db
from mocflow.models.approval_level import ApprovalLevel
from mocflow.models.lookup import Department, Role

# (key, display name)
ROLES = [
    ("Originator", "Change Originator"),
    ("Supervisor", "Area Supervisor"),
    ("DepartmentManager", "Department Manager"),
    ("ProcessSafety", "Process Safety Engineer"),
    ("DivisionManager", "Division Manager"),
    ("Admin", "System Administrator"),
]

# (code, name)
DEPARTMENTS = [
    ("OPS", "Operations"),
    ("MNT", "Maintenance"),
    ("ENG", "Engineering"),
    ("HSE", "Health, Safety & Environment"),
    ("TS", "Technical Services"),
]

# Canonical chain template: (order, role key)
APPROVAL_LEVELS = [
    (1, "Supervisor"),
    (2, "DepartmentManager"),
    (3, "ProcessSafety"),
    (4, "DivisionManager"),
]


def seed():
    created = {"roles": 0, "departments": 0, "approval_levels": 0}

    for key, name in ROLES:
        if Role.query.filter_by(key=key).first() is None:
            db.session.add(Role(key=key, name=name, is_active=True))
            created["roles"] += 1

    for code, name in DEPARTMENTS:
        if Department.query.filter_by(code=code).first() is None:
            db.session.add(Department(code=code, name=name, is_active=True))
            created["departments"] += 1

    if ApprovalLevel.query.count() == 0:
        for order, role_key in APPROVAL_LEVELS:
            db.session.add(ApprovalLevel(order=order, role_key=role_key, is_active=True, created_by="seed"))
            created["approval_levels"] += 1

    db.session.commit()
    return created


def main():
    parser = argparse.ArgumentParser(description="Seed MOC reference data")
    parser.add_argument("--env", default=None, help="development | production (default: APP_ENV)")
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        created = seed()
    print(
        f"Seed complete: {created['roles']} roles, {created['departments']} departments, "
        f"{created['approval_levels']} approval levels added."
    )


if __name__ == "__main__":
    main()
