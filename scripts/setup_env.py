"""Utility script to scaffold a local .env file."""
from __future__ import annotations

import secrets
from pathlib import Path

ENV_TEMPLATE = """# Environment configuration for the Answer Link Portal
SECRET_KEY={secret}
STAFF_PASSWORD=trainingadmin
DEBUG=true
REGISTRY_BASE_URL=http://localhost:8080/api
REGISTRY_TOKEN=
SURVEY_PORTAL_URL=http://localhost:3003
ASSESSMENT_PORTAL_URL=http://localhost:3002
ADMIN_ORIGINS=["http://localhost:8000"]
"""


def main() -> None:
    env_path = Path(".env")
    if env_path.exists():
        print(".env already exists. No changes made.")
        return

    secret = secrets.token_hex(32)
    env_path.write_text(ENV_TEMPLATE.format(secret=secret), encoding="utf-8")
    print("Created .env with generated SECRET_KEY. Set REGISTRY_TOKEN before logging in.")


if __name__ == "__main__":
    main()
