import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecommerce")
# Requires a replica set
MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS")

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# Payment provider (sandbox defaults)
PAYMENT_APP_ID = os.getenv("PAYMENT_APP_ID", "2553")
PAYMENT_KEY1 = os.getenv("PAYMENT_KEY1", "dev-key1-change-me")
PAYMENT_KEY2 = os.getenv("PAYMENT_KEY2", "dev-key2-change-me")
PAYMENT_ENDPOINT = os.getenv("PAYMENT_ENDPOINT", "https://sb-openapi.zalopay.vn/v2/create")
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "")
PAYMENT_REDIRECT_URL = os.getenv("PAYMENT_REDIRECT_URL", "")
PAYMENT_TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "10"))

# Image search
RECOGNITION_URL = os.getenv("RECOGNITION_URL", "https://flower-recognition-api.onrender.com/predict")
RECOGNITION_TIMEOUT = float(os.getenv("RECOGNITION_TIMEOUT", "30"))

# Dashboard
DASHBOARD_TIMEZONE = os.getenv("DASHBOARD_TIMEZONE", "Asia/Ho_Chi_Minh")

# Startup
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
