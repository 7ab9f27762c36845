"""
Environment Configuration Utility

ENVIRONMENT values:
- production: ledger must be MongoDB-backed
- development: in-memory ledger allowed
- test: in-memory ledger allowed for automated testing

LEDGER_BACKEND selects the store: "mongo" (default) or "memory".
"""
import os
import logging

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}
VALID_LEDGER_BACKENDS = {"mongo", "memory"}

# Get current environment (default to development for safety)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()

# Validate environment value
if ENVIRONMENT not in VALID_ENVIRONMENTS:
    logging.warning(f"Invalid ENVIRONMENT '{ENVIRONMENT}', defaulting to 'development'")
    ENVIRONMENT = "development"


def is_production() -> bool:
    """Check if running in production environment."""
    return ENVIRONMENT == "production"


def is_test() -> bool:
    """Check if running in test environment."""
    return ENVIRONMENT == "test"


def get_ledger_backend() -> str:
    """
    Resolve which ledger store to build.

    Production never runs on the in-memory store: balances would vanish on restart.
    """
    backend = os.environ.get("LEDGER_BACKEND", "mongo").lower()

    if backend not in VALID_LEDGER_BACKENDS:
        logging.warning(f"Invalid LEDGER_BACKEND '{backend}', defaulting to 'mongo'")
        backend = "mongo"

    if backend == "memory" and is_production():
        raise ValueError("LEDGER_BACKEND=memory is not allowed when ENVIRONMENT=production")

    return backend


def get_max_attempts(default: int) -> int:
    """Transaction retry ceiling, overridable with LEDGER_MAX_ATTEMPTS."""
    raw = os.environ.get("LEDGER_MAX_ATTEMPTS")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logging.warning(f"Invalid LEDGER_MAX_ATTEMPTS '{raw}', using {default}")
        return default
    return max(value, 1)
