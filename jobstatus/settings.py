import os

TESTING = os.getenv("TESTING") == "1"

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
# seconds a caller waits for a free pooled connection
REDIS_POOL_TIMEOUT = float(os.getenv("REDIS_POOL_TIMEOUT", "5"))

STATUS_NAMESPACE = os.getenv("STATUS_NAMESPACE", "jobstatus")
DEFAULT_EXPIRY = int(os.getenv("STATUS_DEFAULT_EXPIRY", str(60 * 30)))

API_KEY = os.getenv("API_KEY", "dev-key")
