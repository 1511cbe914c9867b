import os

# main.py builds its app at import time; keep it on the in-memory backend
os.environ.setdefault("JWT_SECRET", "test-secret-key-at-least-32-characters")
os.environ["SUPABASE_CONNECTION_ENABLED"] = "false"
