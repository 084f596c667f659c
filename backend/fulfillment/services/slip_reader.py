# Overview: Client for the external bank-slip verification provider (SlipOK).

"""
read_slip() never raises: every provider, network or payload problem comes
back as SlipReadResult(ok=False, error=...). Retries with exponential
backoff on timeouts, connection errors and 5xx responses happen in here and
are invisible to the caller; the total wait is bounded by
timeout x (retries + 1) plus the backoff sleeps.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx
from flask import current_app

from ..money import to_cents
from ..time_utils import local_to_utc, parse_iso_datetime


@dataclass(frozen=True)
class SlipData:
    transaction_ref: str
    amount_cents: int
    transferred_at: datetime  # UTC-naive
    sender_account: str | None = None
    sender_name: str | None = None
    sender_bank: str | None = None
    receiver_account: str | None = None
    receiver_name: str | None = None
    receiver_bank: str | None = None


@dataclass(frozen=True)
class SlipReadResult:
    ok: bool
    slip: SlipData | None = None
    error: str | None = None

    @classmethod
    def success(cls, slip: SlipData) -> "SlipReadResult":
        return cls(ok=True, slip=slip)

    @classmethod
    def failure(cls, error: str) -> "SlipReadResult":
        return cls(ok=False, error=error[:500])


def parse_slip_timestamp(date_str: str, time_str: str | None, tz_name: str) -> datetime:
    """
    Provider wall-clock date/time in the merchant's timezone -> UTC-naive.

    Dates come as "YYYYMMDD", "DD/MM/YYYY" or "YYYY-MM-DD"; times as
    "HH:MM" or "HH:MM:SS" (missing time means midnight).
    """
    date_str = (date_str or "").strip()
    time_str = (time_str or "").strip() or "00:00"

    if "/" in date_str:
        day, month, year = date_str.split("/")
        iso_date = f"{int(year):04d}-{int(month):02d}-{int(day):02d}"
    elif len(date_str) == 8 and date_str.isdigit():
        iso_date = f"{date_str[:4]}-{date_str[4:6]}-{date_str[6:]}"
    else:
        iso_date = date_str

    if time_str.count(":") == 1:
        time_str = f"{time_str}:00"

    local = datetime.fromisoformat(f"{iso_date}T{time_str}")
    return local_to_utc(local.replace(tzinfo=None), tz_name)


def _name(party: dict) -> str | None:
    return party.get("displayName") or party.get("name")


def _account(party: dict) -> str | None:
    account = party.get("account") or {}
    if isinstance(account, dict):
        # SlipOK nests bank/proxy accounts one level deeper on some banks
        value = account.get("value")
        if value is None and isinstance(account.get("bank"), dict):
            value = account["bank"].get("account")
        if value is None and isinstance(account.get("proxy"), dict):
            value = account["proxy"].get("account")
        return value
    return str(account) if account else None


class SlipOkReader:
    """
    POST {"url": image_reference, "log": true} to the provider with the
    x-authorization header and map the response onto SlipData.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        branch_id: str = "",
        *,
        timeout: float = 30.0,
        retries: int = 2,
        tz_name: str = "Asia/Bangkok",
        backoff_base: float = 0.5,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.branch_id = branch_id
        self.timeout = timeout
        self.retries = max(int(retries), 0)
        self.tz_name = tz_name
        self.backoff_base = backoff_base
        self.client = client
        self.sleep = sleep

    @property
    def endpoint(self) -> str:
        if self.branch_id:
            return f"{self.api_url}/{self.branch_id}"
        return self.api_url

    def read_slip(self, image_reference: str) -> SlipReadResult:
        if not self.api_key:
            current_app.logger.warning("Slip provider API key not configured; slip goes to manual review")
            return SlipReadResult.failure("not_configured")

        last_error = "no attempt made"
        for attempt in range(self.retries + 1):
            try:
                response = self._post(image_reference)
            except httpx.TimeoutException as exc:
                last_error = f"timeout: {exc}"
            except httpx.TransportError as exc:
                last_error = f"transport error: {exc}"
            else:
                if response.status_code < 500:
                    return self._parse_response(response)
                last_error = f"provider error: HTTP {response.status_code}"

            current_app.logger.warning(
                "Slip read attempt %d/%d failed: %s", attempt + 1, self.retries + 1, last_error
            )
            if attempt < self.retries:
                self.sleep(self.backoff_base * (2 ** attempt))

        return SlipReadResult.failure(last_error)

    def _post(self, image_reference: str) -> httpx.Response:
        payload = {"url": image_reference, "log": True}
        headers = {"x-authorization": self.api_key}
        if self.client is not None:
            return self.client.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.endpoint, json=payload, headers=headers)

    def _parse_response(self, response: httpx.Response) -> SlipReadResult:
        try:
            body = response.json()
        except ValueError:
            return SlipReadResult.failure(f"malformed response: HTTP {response.status_code}")
        if not isinstance(body, dict):
            return SlipReadResult.failure("malformed response: not an object")

        if response.status_code >= 400 or not body.get("success"):
            message = body.get("message") or f"verification failed: HTTP {response.status_code}"
            return SlipReadResult.failure(str(message))

        data = body.get("data")
        if not isinstance(data, dict):
            return SlipReadResult.failure("malformed slip data: missing data")

        transaction_ref = str(data.get("transRef") or "").strip()
        if not transaction_ref:
            return SlipReadResult.failure("malformed slip data: missing transRef")

        try:
            amount_cents = to_cents(data.get("amount"))
        except ValueError:
            return SlipReadResult.failure(f"malformed slip data: amount {data.get('amount')!r}")

        bad_timestamp = SlipReadResult.failure(
            f"malformed slip data: timestamp {data.get('transTimestamp')!r} "
            f"date {data.get('transDate')!r} time {data.get('transTime')!r}"
        )
        try:
            if str(data.get("transTimestamp") or "").strip():
                transferred_at = parse_iso_datetime(str(data["transTimestamp"]))
            else:
                transferred_at = parse_slip_timestamp(data.get("transDate"), data.get("transTime"), self.tz_name)
        except (ValueError, TypeError):
            return bad_timestamp
        # A slip without a transfer time cannot pass the recency check
        if transferred_at is None:
            return bad_timestamp

        sender = data.get("sender") if isinstance(data.get("sender"), dict) else {}
        receiver = data.get("receiver") if isinstance(data.get("receiver"), dict) else {}
        return SlipReadResult.success(
            SlipData(
                transaction_ref=transaction_ref,
                amount_cents=amount_cents,
                transferred_at=transferred_at,
                sender_account=_account(sender),
                sender_name=_name(sender),
                sender_bank=data.get("sendingBank"),
                receiver_account=_account(receiver),
                receiver_name=_name(receiver),
                receiver_bank=data.get("receivingBank"),
            )
        )
