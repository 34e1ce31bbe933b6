"""Pytest fixtures shared across all awakenfetch tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from awakenfetch.config import APIConfig, AwakenFetchConfig, HTTPConfig, OutputConfig
from awakenfetch.http import RetryPolicy
from awakenfetch.models import AssetAmount, PerpTransaction, Transaction

_ENV_VARS = (
    "AWAKENFETCH_CONFIG_PATH",
    "AWAKENFETCH_TAOSTATS_API_KEY",
    "AWAKENFETCH_SUBSCAN_API_KEY",
    "AWAKENFETCH_VARIATIONAL_API_KEY",
    "AWAKENFETCH_VARIATIONAL_API_SECRET",
    "AWAKENFETCH_HTTP_TIMEOUT",
    "AWAKENFETCH_MAX_RETRIES",
    "AWAKENFETCH_BASE_DELAY",
    "AWAKENFETCH_OUTPUT_FORMAT",
    "AWAKENFETCH_OUTPUT_DIR",
    "TAOSTATS_API_KEY",
    "SUBSCAN_API_KEY",
    "VARIATIONAL_API_KEY",
    "VARIATIONAL_API_SECRET",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own keys and config out of every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> AwakenFetchConfig:
    """Minimal valid AwakenFetchConfig for tests (no retries, no sleeping)."""
    return AwakenFetchConfig(
        api=APIConfig(
            taostats_api_key="tao_test_key_12345",
            subscan_api_key="",
            variational_api_key="var_key_123",
            variational_api_secret="var_secret_456",
            extended_api_key="ext_key_789",
        ),
        http=HTTPConfig(timeout=5.0, max_retries=0, base_delay=0.0),
        output=OutputConfig(default_format="json", output_dir="."),
    )


@pytest.fixture
def no_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=0, base_delay=0.0)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=0.0)


# ── Model fixtures ────────────────────────────────────────────────────────────


T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def send_tx() -> Transaction:
    return Transaction(
        date=T0,
        type="send",
        sent_quantity=Decimal("9.99995"),
        sent_currency="KAS",
        fee_amount=Decimal("0.00005"),
        fee_currency="KAS",
        tx_hash="abc123",
        notes="Transfer",
    )


@pytest.fixture
def receive_tx() -> Transaction:
    return Transaction(
        date=datetime(2025, 3, 2, 8, 30, 15, tzinfo=timezone.utc),
        type="receive",
        received_quantity=Decimal("1.5"),
        received_currency="KAS",
        tx_hash="def456",
    )


@pytest.fixture
def three_leg_tx() -> Transaction:
    """Trade with three received legs and one sent leg."""
    return Transaction(
        date=datetime(2025, 3, 3, tzinfo=timezone.utc),
        type="trade",
        received_quantity=Decimal("10"),
        received_currency="ATOM",
        sent_quantity=Decimal("5"),
        sent_currency="OSMO",
        additional_received=[
            AssetAmount(Decimal("2"), "USDC"),
            AssetAmount(Decimal("0.5"), "ETH"),
        ],
        tx_hash="multi1",
    )


@pytest.fixture
def perp_close() -> PerpTransaction:
    return PerpTransaction(
        date=T0,
        asset="BTC",
        amount=Decimal("0.5"),
        pnl=Decimal("-120.25"),
        payment_token="USDC",
        tag="close_position",
        fee=Decimal("1.5"),
        notes="Close long BTC",
        tx_hash="0xperp",
    )
