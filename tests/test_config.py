"""Tests for settings and the components built from them."""

from __future__ import annotations

import pydantic
import pytest

from settlement.config import Settings
from settlement.payments import (
    BreakerState,
    ResilienceContext,
    SimulatedProvider,
    StripeProvider,
    build_provider,
)
from settlement.webhooks import HmacSignature, StripeSignature, Unverified, build_verifier


def settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]


class TestSettings:
    def test_defaults(self) -> None:
        s = settings()

        assert s.provider == "simulated"
        assert s.currency == "USD"
        assert s.retry_attempts == 3

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SETTLEMENT_CURRENCY", "GBP")
        monkeypatch.setenv("SETTLEMENT_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("SETTLEMENT_LOG_JSON", "false")

        s = settings()

        assert s.currency == "GBP"
        assert s.retry_attempts == 5
        assert s.log_json is False

    def test_rejects_unknown_provider(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            settings(provider="paypal")

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            settings(retry_attempts=0)


class TestFactories:
    def test_simulated_provider_by_default(self) -> None:
        assert isinstance(build_provider(settings()), SimulatedProvider)

    def test_stripe_provider_requires_key(self) -> None:
        with pytest.raises(ValueError, match="STRIPE_API_KEY"):
            build_provider(settings(provider="stripe"))

        assert isinstance(
            build_provider(settings(provider="stripe", stripe_api_key="sk_test_x")),
            StripeProvider,
        )

    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({}, Unverified),
            ({"webhook_secret": "whsec_x"}, HmacSignature),
            ({"webhook_secret": "whsec_x", "provider": "stripe"}, StripeSignature),
        ],
    )
    def test_verifier_choice(self, overrides: dict[str, str], expected: type) -> None:
        assert isinstance(build_verifier(settings(**overrides)), expected)

    def test_resilience_from_settings(self) -> None:
        context = ResilienceContext.from_settings(
            settings(retry_attempts=4, breaker_failure_threshold=2, provider_timeout_seconds=1.5)
        )

        assert context.retry.attempts == 4
        assert context.breaker_policy.failure_threshold == 2
        assert context.timeout == 1.5
        assert context.status("anything").state is BreakerState.CLOSED
