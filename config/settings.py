"""
Configuration settings for the Campaign Deployment Engine
"""
import os
from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# LLM Configuration (AI Planning Service)
# =============================================================================
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "")  # "anthropic", "openai", "mock"; empty = auto-detect
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
MODEL_NAME = os.getenv("MODEL_NAME", "")
REASONING_MODEL_NAME = os.getenv("REASONING_MODEL_NAME", "")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120.0"))

# Generation options per purpose
PLAN_TEMPERATURE = float(os.getenv("PLAN_TEMPERATURE", "0.7"))
PLAN_MAX_OUTPUT_TOKENS = int(os.getenv("PLAN_MAX_OUTPUT_TOKENS", "8192"))
RECOVERY_TEMPERATURE = float(os.getenv("RECOVERY_TEMPERATURE", "0.3"))
COMPLIANCE_TEMPERATURE = float(os.getenv("COMPLIANCE_TEMPERATURE", "0.4"))

# =============================================================================
# Observability Configuration
# =============================================================================

# Structured Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "console"
LOG_FILE = os.getenv("LOG_FILE", None)

# Prometheus Metrics
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() == "true"
METRICS_PORT = int(os.getenv("METRICS_PORT", "9090"))

# =============================================================================
# Platform Call Retry Configuration (attempt cap lives in the policy)
# =============================================================================
PLATFORM_RETRY_MIN_WAIT = float(os.getenv("PLATFORM_RETRY_MIN_WAIT", "1.0"))
PLATFORM_RETRY_MAX_WAIT = float(os.getenv("PLATFORM_RETRY_MAX_WAIT", "30.0"))
PLATFORM_RETRY_JITTER = float(os.getenv("PLATFORM_RETRY_JITTER", "0.25"))

CIRCUIT_BREAKER_FAIL_MAX = int(os.getenv("CIRCUIT_BREAKER_FAIL_MAX", "5"))
CIRCUIT_BREAKER_RESET_TIMEOUT = int(os.getenv("CIRCUIT_BREAKER_RESET_TIMEOUT", "300"))

# =============================================================================
# Deployment Configuration
# =============================================================================

# Checked once at orchestrator entry
DEPLOYMENT_ENABLED = os.getenv("DEPLOYMENT_ENABLED", "true").lower() == "true"

# Optional JSON file overriding DEFAULT_POLICY values
POLICY_FILE = os.getenv("POLICY_FILE", "")

# =============================================================================
# Cache Configuration
# =============================================================================
REDIS_URL = os.getenv("REDIS_URL", "")
HEALTH_REPORT_TTL_SECONDS = int(os.getenv("HEALTH_REPORT_TTL_SECONDS", str(6 * 3600)))
CONNECTIVITY_TTL_SECONDS = int(os.getenv("CONNECTIVITY_TTL_SECONDS", str(30 * 60)))
FIX_ATTEMPT_TTL_SECONDS = int(os.getenv("FIX_ATTEMPT_TTL_SECONDS", str(7 * 24 * 3600)))

# =============================================================================
# Self-Healing Sweep
# =============================================================================
SWEEP_MAX_WORKERS = int(os.getenv("SWEEP_MAX_WORKERS", "4"))
