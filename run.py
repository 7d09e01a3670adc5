"""Development server for the studio booking API."""
from __future__ import annotations

import os

from studio import create_app
from studio.extensions import db

TRUTHY = {"1", "true", "True"}


def main() -> None:
    flask_app = create_app()

    if os.environ.get("CREATE_TABLES", "0") in TRUTHY:
        with flask_app.app_context():
            db.create_all()

    print("\n=== Booking API routes ===")
    for rule in sorted(flask_app.url_map.iter_rules(), key=lambda r: r.rule):
        methods = ",".join(sorted(rule.methods - {"HEAD", "OPTIONS"}))
        print(f"{methods:<10} {rule.rule}")
    print("==========================\n")

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in TRUTHY
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled)


if __name__ == "__main__":
    main()
