"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


_DEFAULT_ENV_VARS: dict[str, str] = {
    "TOKEN_ENCRYPTION_SECRET": "test-secret",
    "FRONTEND_BASE_URL": "https://app.example.com",
    "DATABASE_PATH": str(Path(tempfile.gettempdir()) / "social_sync_test.db"),
    "SYNC_ENABLED": "false",
    "LINKEDIN_CLIENT_ID": "linkedin-client-id",
    "LINKEDIN_CLIENT_SECRET": "linkedin-client-secret",
    "LINKEDIN_REDIRECT_URI": "https://api.example.com/api/oauth/linkedin/callback",
    "INSTAGRAM_CLIENT_ID": "instagram-client-id",
    "INSTAGRAM_CLIENT_SECRET": "instagram-client-secret",
    "INSTAGRAM_REDIRECT_URI": "https://api.example.com/api/oauth/instagram/callback",
    "INSTAGRAM_WEBHOOK_VERIFY_TOKEN": "instagram-verify-token",
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
