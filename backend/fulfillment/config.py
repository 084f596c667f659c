# backend/fulfillment/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///fulfillment.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Merchant location
    DEFAULT_BRANCH_CODE = os.environ.get("DEFAULT_BRANCH_CODE", "BR1")
    DEFAULT_BRANCH_NAME = os.environ.get("DEFAULT_BRANCH_NAME", "Main Kitchen")
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Bangkok")
    DEFAULT_TAX_RATE_BPS = _int_env("DEFAULT_TAX_RATE_BPS", 700)  # 7% VAT

    # Order defaults
    BASE_PREP_MINUTES = _int_env("BASE_PREP_MINUTES", 10)
    PREP_MINUTES_PER_ITEM = _int_env("PREP_MINUTES_PER_ITEM", 2)
    UNPAID_ORDER_TTL_HOURS = _int_env("UNPAID_ORDER_TTL_HOURS", 24)
    DELIVERY_SLOT_CAPACITY = os.environ.get("DELIVERY_SLOT_CAPACITY", "MORNING:8,EVENING:7")

    # Slip matching policy
    MERCHANT_ACCOUNTS = os.environ.get("MERCHANT_ACCOUNTS", "")
    SLIP_AMOUNT_TOLERANCE_CENTS = _int_env("SLIP_AMOUNT_TOLERANCE_CENTS", 100)
    SLIP_RECENCY_HOURS = _int_env("SLIP_RECENCY_HOURS", 24)
    SLIP_CLOCK_SKEW_MINUTES = _int_env("SLIP_CLOCK_SKEW_MINUTES", 5)

    # Slip verification provider
    SLIPOK_API_URL = os.environ.get("SLIPOK_API_URL", "https://api.slipok.com/api/line/apikey")
    SLIPOK_BRANCH_ID = os.environ.get("SLIPOK_BRANCH_ID", "")
    SLIPOK_API_KEY = os.environ.get("SLIPOK_API_KEY", "")
    SLIP_READER_TIMEOUT_SECONDS = float(os.environ.get("SLIP_READER_TIMEOUT_SECONDS", "30"))
    SLIP_READER_RETRIES = _int_env("SLIP_READER_RETRIES", 2)


def parse_account_list(value: str | list | tuple | None) -> tuple[str, ...]:
    """Comma-separated account numbers -> tuple of digit strings."""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    accounts = []
    for raw in value:
        digits = "".join(ch for ch in str(raw) if ch.isdigit())
        if digits:
            accounts.append(digits)
    return tuple(accounts)


def parse_slot_capacity(value: str | Mapping[str, int] | None) -> dict[str, int]:
    """
    Parse "MORNING:8,EVENING:7" into {"MORNING": 8, "EVENING": 7}.

    Slot codes are upper-cased; a malformed entry raises ValueError at startup
    rather than silently disabling a slot.
    """
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(k).upper(): int(v) for k, v in value.items()}

    capacity: dict[str, int] = {}
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        code, sep, count = entry.partition(":")
        if not sep or not code.strip():
            raise ValueError(f"Invalid delivery slot entry: {entry!r}")
        capacity[code.strip().upper()] = int(count)
    return capacity


@dataclass(frozen=True)
class CoreSettings:
    """Policy values handed to the services; built once per app."""
    default_branch_code: str = "BR1"
    base_prep_minutes: int = 10
    prep_minutes_per_item: int = 2
    unpaid_order_ttl_hours: int = 24
    delivery_slot_capacity: Mapping[str, int] | None = None
    merchant_accounts: tuple[str, ...] = ()
    slip_amount_tolerance_cents: int = 100
    slip_recency_hours: int = 24
    slip_clock_skew_minutes: int = 5

    @classmethod
    def from_mapping(cls, config: Mapping) -> "CoreSettings":
        return cls(
            default_branch_code=config.get("DEFAULT_BRANCH_CODE", "BR1"),
            base_prep_minutes=int(config.get("BASE_PREP_MINUTES", 10)),
            prep_minutes_per_item=int(config.get("PREP_MINUTES_PER_ITEM", 2)),
            unpaid_order_ttl_hours=int(config.get("UNPAID_ORDER_TTL_HOURS", 24)),
            delivery_slot_capacity=parse_slot_capacity(config.get("DELIVERY_SLOT_CAPACITY")),
            merchant_accounts=parse_account_list(config.get("MERCHANT_ACCOUNTS")),
            slip_amount_tolerance_cents=int(config.get("SLIP_AMOUNT_TOLERANCE_CENTS", 100)),
            slip_recency_hours=int(config.get("SLIP_RECENCY_HOURS", 24)),
            slip_clock_skew_minutes=int(config.get("SLIP_CLOCK_SKEW_MINUTES", 5)),
        )
