import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "promptpro")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-key")
JWT_ALG = "HS256"
ACCESS_TOKEN_DAYS = int(os.getenv("ACCESS_TOKEN_DAYS", "7"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Billing
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_PRO_TEAM_PRICE_ID = os.getenv("STRIPE_PRO_TEAM_PRICE_ID")

# Plan limits. None means unbounded.
FREE_USER_PROMPT_LIMIT = int(os.getenv("FREE_USER_PROMPT_LIMIT", "10"))
FREE_TEAM_PROMPT_LIMIT = int(os.getenv("FREE_TEAM_PROMPT_LIMIT", "50"))
PRO_TEAM_PROMPT_LIMIT = int(os.getenv("PRO_TEAM_PROMPT_LIMIT", "1000"))

USER_PLAN_LIMITS = {"Free": FREE_USER_PROMPT_LIMIT, "Pro": None}
TEAM_PLAN_LIMITS = {"Free": FREE_TEAM_PROMPT_LIMIT, "Pro": PRO_TEAM_PROMPT_LIMIT}

# Analytics / admin
ANALYTICS_WINDOW_DAYS = int(os.getenv("ANALYTICS_WINDOW_DAYS", "30"))
AUDIT_LOGS_PER_PAGE = int(os.getenv("AUDIT_LOGS_PER_PAGE", "50"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
