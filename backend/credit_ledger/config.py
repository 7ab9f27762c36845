"""
Credit Ledger Configuration and Constants

Cost table, credit packs, premium window and retry bounds are defined here.
All amounts are whole credits.
"""

# ==================== MODEL CREDIT COSTS ====================
# Credits debited per tool run, keyed by the model the tool runs on
MODEL_CREDIT_COSTS = {
    "gpt-4": 2,
    "default": 1    # Any other model
}

# ==================== CREDIT PACKS ====================
CREDIT_PACKS = {
    "starter": {
        "name": "starter",
        "credits": 10,
        "price_usd": 4.99,
        "is_premium": False,
        "description": "10 tool credits"
    },
    "creator": {
        "name": "creator",
        "credits": 50,
        "price_usd": 19.99,
        "is_premium": False,
        "description": "50 tool credits"
    },
    "premium": {
        "name": "premium",
        "credits": 100,
        "price_usd": 29.99,
        "is_premium": True,
        "description": "100 tool credits + 30 days of premium activity history"
    }
}

# ==================== PREMIUM ENTITLEMENT ====================
# A premium purchase sets the expiry to now + this many days (it does not stack)
PREMIUM_DURATION_DAYS = 30

# ==================== TRANSACTION ENGINE ====================
MAX_TRANSACTION_ATTEMPTS = 5
TRANSACTION_RETRY_BACKOFF_SECONDS = 0.01

# Balances and entry amounts are stored as BSON int64
MAX_CREDIT_AMOUNT = 2 ** 63 - 1

# ==================== PAYMENT PROVIDERS ====================
SUPPORTED_PROVIDERS = ("stripe", "google_play", "app_store")

# Payload keys that may carry the provider's unique event/order id
PROVIDER_EVENT_ID_KEYS = ("id", "event_id", "order_id", "transaction_id")

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "INSUFFICIENT_CREDITS": "Payment Required: Insufficient credits to run the tool.",
    "INVALID_AMOUNT": "Credit amount must be a positive whole number.",
    "MISSING_IDEMPOTENCY_KEY": "A purchase credit requires an idempotency key.",
    "DUPLICATE_IDEMPOTENCY_KEY": "This purchase event has already been applied.",
    "ACCOUNT_NOT_FOUND": "User not found.",
    "CONTENTION": "The account is busy. Please try again.",
    "STORAGE_UNAVAILABLE": "The credit ledger is temporarily unavailable.",
    "LEDGER_INVARIANT": "An internal error occurred.",
    "UNSUPPORTED_PROVIDER": "Unsupported payment provider.",
    "INVALID_WEBHOOK_PAYLOAD": "Missing user ID or credit amount from webhook payload."
}

# Ledger collection names
ACCOUNTS_COLLECTION = "accounts"
LEDGER_COLLECTION = "ledger"
PURCHASE_EVENTS_COLLECTION = "purchase_events"
USER_ACTIVITY_COLLECTION = "user_activity"
