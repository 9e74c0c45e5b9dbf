import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

APP_ENV = os.getenv("APP_ENV", "production")

# Only these environments may run on the well-known development secret
DEV_ENVIRONMENTS = ("development", "test")
DEV_JWT_SECRET = "dev-only-secret"


def load_jwt_secret(environ=os.environ) -> str:
    secret = environ.get("JWT_SECRET")
    if secret:
        return secret
    if environ.get("APP_ENV", "production") in DEV_ENVIRONMENTS:
        return DEV_JWT_SECRET
    raise RuntimeError("JWT_SECRET is not set; refusing to start outside development")


JWT_SECRET = load_jwt_secret()
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Seconds between registry statistics log lines
STATS_INTERVAL_SECONDS = int(os.getenv("STATS_INTERVAL_SECONDS", 60))

MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", 50))
