import os

from dotenv import load_dotenv

from .precision import to_decimal

load_dotenv()


def _split_origins(value: str):
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    if origins == ["*"]:
        return "*"
    return origins


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Browsers on other origins call the JSON API directly
    CORS_ORIGINS = _split_origins(os.environ.get("CORS_ORIGINS", "*"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Who absorbs the rounding residual of a split: "first" or "largest"
    REMAINDER_RULE = os.environ.get("REMAINDER_RULE", "first").lower()

    MAX_EXPENSE_AMOUNT = to_decimal(os.environ.get("MAX_EXPENSE_AMOUNT", "10000000"))
    SETTLEMENT_TOLERANCE = to_decimal(os.environ.get("SETTLEMENT_TOLERANCE", "0.01"))


config = Config()
