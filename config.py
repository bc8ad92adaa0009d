import os
from dotenv import load_dotenv

# Load .env
load_dotenv()

class Settings:
    """
    Application settings and environment variables.
    """
    # Analytics ingest server
    ANALYTICS_DATABASE_URL = os.getenv("ANALYTICS_DATABASE_URL", "sqlite:///./analytics.db")
    ANALYTICS_PORT = int(os.getenv("ANALYTICS_PORT", "8787"))

    # Client side sync target
    ANALYTICS_SERVER_URL = os.getenv("ANALYTICS_SERVER_URL", "http://localhost:8787")
    SYNC_TIMEOUT_S = float(os.getenv("SYNC_TIMEOUT_S", "10"))

    # Remote completion service (outcome/report extraction)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    EXTRACTION_TIMEOUT_S = float(os.getenv("EXTRACTION_TIMEOUT_S", "8"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        """
        Checks values that are needed for the full pipeline.
        """
        missing = []
        if not cls.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY")

        if missing:
            raise ValueError(f"Missing environment variables: {', '.join(missing)}")

# Validate on import; extraction falls back to local heuristics without a key
try:
    Settings.validate()
except ValueError as e:
    print(f"WARNING: {e}")
