import os

# --- CONFIGURATION ---
DATABASE_URL = os.getenv("PARKEASY_DATABASE_URL", "sqlite:///parking.db")
SQL_ECHO = os.getenv("PARKEASY_SQL_ECHO", "0") == "1"
LOG_LEVEL = os.getenv("PARKEASY_LOG_LEVEL", "INFO")
SQLITE_BUSY_TIMEOUT = float(os.getenv("PARKEASY_SQLITE_BUSY_TIMEOUT", "30"))  # seconds
DEFAULT_SLOTS = int(os.getenv("PARKEASY_DEFAULT_SLOTS", "4"))
