# Shared configuration for the complaint store, enrichment and HTTP surface

import os
from pathlib import Path

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
# Try multiple .env locations: next to the package, one level up, then cwd
_package_dir = Path(__file__).resolve().parent
for _env_path in [_package_dir / ".env", _package_dir.parent / ".env", Path.cwd() / ".env"]:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
STORE_BACKEND = os.getenv("STORE_BACKEND", "file")  # file | mongo | memory
STORE_PATH = os.getenv("STORE_PATH", "railmadad_complaints_data.json")
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "railmadad")
STORE_DOCUMENT_ID = "complaints"

# ---------------------------------------------------------------------------
# AI services
# ---------------------------------------------------------------------------
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-5-mini")
ENRICHMENT_DELAY_SECONDS = float(os.getenv("ENRICHMENT_DELAY_SECONDS", "0.8"))
CHANGE_POLL_SECONDS = float(os.getenv("CHANGE_POLL_SECONDS", "2.0"))

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# ---------------------------------------------------------------------------
# Record defaults
# ---------------------------------------------------------------------------
ANONYMOUS_EMAIL = os.getenv("ANONYMOUS_EMAIL", "anonymous")
DEFAULT_DEPARTMENT = os.getenv("DEFAULT_DEPARTMENT", "Customer Service")
DEFAULT_TITLE_TYPE = "General"
DEFAULT_TITLE_SUBTYPE = "Complaint"
