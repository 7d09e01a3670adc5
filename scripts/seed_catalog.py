#!/usr/bin/env python3
"""
Seed the catalog with sample packages, add-ons, a promo and an admin account.
Safe to run more than once; existing rows are left alone.
"""

import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from werkzeug.security import generate_password_hash

from studio import create_app
from studio.extensions import db
from studio.models import AddOn, AuthAccount, Package, Promo, SubAddOn, SubPackage, User

PACKAGES = [
    {
        "name": "Self Photo",
        "package_type": "Studio",
        "is_group_package": False,
        "sub_packages": [("Basic 15 min", 75000), ("Plus 30 min", 120000)],
    },
    {
        "name": "Group Studio",
        "package_type": "Studio",
        "is_group_package": True,
        "sub_packages": [("Group 30 min", 150000), ("Group 60 min", 250000)],
    },
    {
        "name": "Outdoor Session",
        "package_type": "Outdoor",
        "is_group_package": False,
        "sub_packages": [("Half day", 900000), ("Full day", 1600000)],
    },
]

ADDONS = [
    {"name": "Extra Prints", "sub_addons": [("4R print x5", 25000), ("10R print", 40000)]},
    {"name": "Costume", "sub_addons": [("Kebaya", 50000)]},
]


def seed_catalog():
    """Insert the sample catalog rows that are missing."""
    app = create_app()

    with app.app_context():
        print("🔄 Seeding catalog...")
        db.create_all()

        for entry in PACKAGES:
            if Package.query.filter_by(name=entry["name"]).first():
                print(f"⏭️  Package {entry['name']} already exists")
                continue
            package = Package(
                name=entry["name"],
                package_type=entry["package_type"],
                is_group_package=entry["is_group_package"],
            )
            package.sub_packages = [SubPackage(name=n, price=p) for n, p in entry["sub_packages"]]
            db.session.add(package)
            print(f"✅ Package {entry['name']}")

        for entry in ADDONS:
            if AddOn.query.filter_by(name=entry["name"]).first():
                print(f"⏭️  Add-on {entry['name']} already exists")
                continue
            addon = AddOn(name=entry["name"])
            addon.sub_addons = [SubAddOn(name=n, price=p) for n, p in entry["sub_addons"]]
            db.session.add(addon)
            print(f"✅ Add-on {entry['name']}")

        if not Promo.query.filter_by(code="DISC10").first():
            db.session.add(Promo(code="DISC10", description="Diskon 10%", discount_percentage=10))
            print("✅ Promo DISC10")

        admin_email = os.environ.get("ADMIN_EMAIL", "admin@studio.local")
        if not User.query.filter_by(email=admin_email).first():
            admin = User(name="Studio Admin", email=admin_email, role="admin")
            db.session.add(admin)
            db.session.flush()
            password = os.environ.get("ADMIN_PASSWORD", "change-me")
            db.session.add(AuthAccount(user_id=admin.user_id, password_hash=generate_password_hash(password)))
            print(f"✅ Admin user {admin_email}")

        db.session.commit()
        print("🎉 Catalog seeded")


if __name__ == "__main__":
    seed_catalog()
