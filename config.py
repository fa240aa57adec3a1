import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

def get_env_var(name: str) -> str:
    """Get environment variable or raise a clear error if missing."""
    value = os.getenv(name)
    if not value:
        raise RuntimeError(
            f"❌ Missing required environment variable: {name}\n"
            f"👉 Did you copy .env.example to .env and fill in your keys?"
        )
    return value


def use_offline_models() -> bool:
    """
    True when the language-model agents must not be called
    (test mode, or no model key configured).
    Read at call time so tests can flip it with monkeypatch.
    """
    if os.getenv("GATE_TEST_MODE", "0") == "1":
        return True
    return not os.getenv("GOOGLE_API_KEY")


# Model
GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_NAME", "gemini-1.5-flash")

# Optional vars (with defaults)
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
PORT = int(os.getenv("PORT", "8000"))

# Relational source (optional: document sources work without it)
DATABASE_URL = os.getenv("DATABASE_URL")

# Data files
DATA_DIR = Path(__file__).resolve().parent / "data"
POLICY_TABLE_PATH = os.getenv("POLICY_TABLE_PATH", str(DATA_DIR / "policy_table.json"))
SCHEMA_CATALOG_PATH = os.getenv("SCHEMA_CATALOG_PATH", str(DATA_DIR / "schema_catalog.json"))
DOCUMENT_STORE_PATH = os.getenv("DOCUMENT_STORE_PATH", str(DATA_DIR / "documents.json"))
AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH")
AUDIT_API_TOKEN = os.getenv("AUDIT_API_TOKEN")

# Timeouts (seconds) and limits
CLASSIFIER_TIMEOUT_S = float(os.getenv("CLASSIFIER_TIMEOUT_S", "8"))
CLASSIFIER_RETRY_BACKOFF_S = float(os.getenv("CLASSIFIER_RETRY_BACKOFF_S", "0.5"))
CLASSIFIER_CONTEXT_TURNS = int(os.getenv("CLASSIFIER_CONTEXT_TURNS", "6"))
CLASSIFIER_CONTEXT_CHARS = int(os.getenv("CLASSIFIER_CONTEXT_CHARS", "500"))
PLANNER_TIMEOUT_S = float(os.getenv("PLANNER_TIMEOUT_S", "15"))
KNOWLEDGE_TIMEOUT_S = float(os.getenv("KNOWLEDGE_TIMEOUT_S", "15"))
EXECUTION_TIMEOUT_S = float(os.getenv("EXECUTION_TIMEOUT_S", "20"))
EXECUTION_RETRY_BACKOFF_S = float(os.getenv("EXECUTION_RETRY_BACKOFF_S", "0.5"))
REQUEST_TIMEOUT_S = float(os.getenv("REQUEST_TIMEOUT_S", "60"))
MAX_RESULT_ROWS = int(os.getenv("MAX_RESULT_ROWS", "500"))
