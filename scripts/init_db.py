#!/usr/bin/env python3
"""Create the booking tables and the default loyalty settings row."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from studio import create_app
from studio.extensions import db
from studio.settings_store import load_loyalty_settings, save_loyalty_settings


def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        # Store the merged defaults as the settings row.
        save_loyalty_settings(db.session, load_loyalty_settings(db.session))
        db.session.commit()
        print("✅ Database tables initialized successfully")


if __name__ == "__main__":
    init_database()
