import os

# Retrieve the connection string from the environment (Neon/Postgres in
# production, SQLite for local runs and tests).
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise Exception("DATABASE_URL environment variable is not set.")

# Shared secret sent in the X-Admin-Token header to unlock admin endpoints.
# Empty means admin mode is disabled.
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

JOLPICA_BASE_URL = os.getenv("JOLPICA_BASE_URL", "https://api.jolpi.ca/ergast/f1")
F1_SEASON = os.getenv("F1_SEASON", "2025")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "https://ac2500.github.io").split(",")
    if origin.strip()
]
