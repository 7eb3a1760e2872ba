"""Configuration for the support ticket service (storage, analyzer, worker)."""

import os

# --- Storage ---
# "memory" keeps tickets/agents in process; "redis" shares them with the worker.
STORE_BACKEND: str = os.environ.get("STORE_BACKEND", "memory").lower()
REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))
SEED_DEFAULT_AGENTS: bool = os.environ.get("SEED_DEFAULT_AGENTS", "1") == "1"

# --- Ticket analyzer ---
ANALYZER_BACKEND: str = os.environ.get("ANALYZER_BACKEND", "keyword").lower()  # keyword | llm
LLM_API_KEY: str = os.environ.get("LLM_API_KEY", "")
LLM_BASE_URL: str = os.environ.get("LLM_BASE_URL", "https://api.openai.com/v1")
LLM_MODEL: str = os.environ.get("LLM_MODEL", "gpt-4o-mini")
ANALYZER_TIMEOUT_SECONDS: float = float(os.environ.get("ANALYZER_TIMEOUT_SECONDS", "10"))

# --- Circuit breaker around the analyzer ---
CIRCUIT_COOLDOWN_SECONDS: int = int(os.environ.get("CIRCUIT_COOLDOWN_SECONDS", "60"))
CIRCUIT_HALF_OPEN_PROBES: int = int(os.environ.get("CIRCUIT_HALF_OPEN_PROBES", "3"))

# --- Sentiment ---
USE_TRANSFORMER_SENTIMENT: bool = os.environ.get("USE_TRANSFORMER_SENTIMENT", "1") == "1"
# Per-call budget for the sentiment model inside keyword analysis; regex baseline past it.
SENTIMENT_TIMEOUT_SECONDS: float = float(os.environ.get("SENTIMENT_TIMEOUT_SECONDS", "2"))

# Optional: Slack or Discord webhook URL for ticket/escalation notifications.
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")

# --- Escalation worker ---
ESCALATION_SCAN_INTERVAL_MINUTES: int = int(os.environ.get("ESCALATION_SCAN_INTERVAL_MINUTES", "5"))

CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]
