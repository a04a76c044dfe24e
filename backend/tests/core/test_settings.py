"""Tests for gateway environment settings."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestGatewayEnvironment:

    @pytest.mark.parametrize("value, sandbox", [
        ("test", True),
        ("live", False),
        (" LIVE ", False),
    ])
    def test_known_environments(self, value, sandbox) -> None:
        settings = Settings(
            GATEWAY_ENV=value,
            GATEWAY_ACCESS_TOKEN_TEST="TEST-token",
            GATEWAY_ACCESS_TOKEN_LIVE="APP_USR-token",
        )

        assert settings.is_sandbox is sandbox
        assert settings.gateway_access_token == ("TEST-token" if sandbox else "APP_USR-token")

    @pytest.mark.parametrize("value", ["production", "prod", "sandbox", ""])
    def test_unknown_environment_is_rejected(self, value) -> None:
        with pytest.raises(ValidationError):
            Settings(GATEWAY_ENV=value)
