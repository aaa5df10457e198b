"""
Engine Settings - Emergent Scholarship

All runtime configuration for the review engine and the MCP server, read once
from environment variables at import time. Every value has a default that works
for local development.

    STORE_PATH             JSON store file (local mode)
    STORE_MODE             'local' (read/write JSON file) or 'remote' (read-only snapshot)
    SNAPSHOT_URL           URL of a published store snapshot for remote mode
    SAFETY_PATTERNS_PATH   Optional JSON file with extra detectors / allowlist entries
    LOG_LEVEL              Logging level name for the MCP entry point
    CHALLENGE_TTL_SECONDS  How long an auth challenge stays valid
    CITATION_PREFIX        Prefix of citation identifiers (ES-YYYY-NNNN)
"""

import os

STORE_PATH = os.environ.get(
    "STORE_PATH",
    os.path.join(os.getcwd(), "data", "scholarship-store.json"),
)
STORE_MODE = os.environ.get("STORE_MODE", "local")
SNAPSHOT_URL = os.environ.get("SNAPSHOT_URL", "")
SAFETY_PATTERNS_PATH = os.environ.get("SAFETY_PATTERNS_PATH") or None
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
CHALLENGE_TTL_SECONDS = int(os.environ.get("CHALLENGE_TTL_SECONDS", "300"))
CITATION_PREFIX = os.environ.get("CITATION_PREFIX", "ES")
