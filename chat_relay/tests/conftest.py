import os

# Settings are read once at import time; keep the inbound limiter out of the way
# and make sure no real credentials leak into the app under test.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
for name in ("YUNWU_API_KEY", "YUNWU_REVERSE_KEYS", "YUNWU_OFFICIAL_KEYS", "YUNWU_GEMINI_KEY", "YUNWU_CLAUDE_KEYS", "ACCESS_PASSWORD"):
    os.environ.pop(name, None)
