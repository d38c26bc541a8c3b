import os

app = "paypal_sandbox.main:app"
host = os.getenv("SANDBOX_HOST", "0.0.0.0")
port = int(os.getenv("PORT", "9002"))
# A single worker keeps the SQLite default usable
workers = int(os.getenv("UVICORN_WORKERS", "1"))
http = "h11"
log_level = os.getenv("LOG_LEVEL", "info")
