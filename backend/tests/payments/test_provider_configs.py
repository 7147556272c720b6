"""Tests for per-provider configuration schemas.

Covers parsing, structural validation before storage, and the secret
field markers the config store relies on.
"""

import pytest

from app.core.exceptions import ValidationError
from app.modules.payments.models import GatewayType
from app.modules.payments.provider_configs import (
    ARCA_BANKS,
    ArcaConfig,
    IdramConfig,
    InecobankConfig,
    parse_provider_config,
    secret_paths,
    transform_secrets,
    validate_for_storage,
)


class TestSecretMarkers:

    def test_idram_secret_paths(self):
        assert secret_paths(IdramConfig) == ["idram_key", "idram_test_key"]

    def test_bank_account_passwords_are_secret(self):
        paths = secret_paths(InecobankConfig)

        assert paths == [
            "accounts.AMD.password",
            "accounts.USD.password",
            "accounts.EUR.password",
            "accounts.RUB.password",
        ]

    def test_usernames_are_not_secret(self):
        assert not any(path.endswith("username") for path in secret_paths(ArcaConfig))

    def test_transform_secrets_visits_only_secret_fields(self):
        config = parse_provider_config(
            GatewayType.INECOBANK,
            {"accounts": {"AMD": {"username": "user", "password": "pass"}}},
        )
        seen = []

        def mark(path, value):
            seen.append(path)
            return f"<{value}>" if value else value

        transformed = transform_secrets(config, mark)

        assert "accounts.AMD.password" in seen
        assert transformed.accounts.AMD.password == "<pass>"
        assert transformed.accounts.AMD.username == "user"
        # Original untouched
        assert config.accounts.AMD.password == "pass"


class TestParseProviderConfig:

    def test_unknown_field_rejected_with_provider_and_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_provider_config(GatewayType.IDRAM, {"idram_id": "1", "unexpected": True})

        assert exc_info.value.extra["provider"] == "idram"
        assert exc_info.value.extra["field"] == "unexpected"

    def test_wrong_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_provider_config(GatewayType.ARCA, {"test_port": "not-a-port"})

        assert exc_info.value.extra["field"] == "test_port"

    def test_empty_config_parses_to_defaults(self):
        config = parse_provider_config(GatewayType.IDRAM, None)

        assert config.default_language == "en"
        assert config.rocket_line is False


class TestValidateForStorage:

    def test_ameriabank_requires_client_id(self):
        config = parse_provider_config(GatewayType.AMERIABANK, {})

        with pytest.raises(ValidationError) as exc_info:
            validate_for_storage(GatewayType.AMERIABANK, config)

        assert exc_info.value.extra["field"] == "client_id"

    def test_inecobank_requires_an_account(self):
        config = parse_provider_config(GatewayType.INECOBANK, {})

        with pytest.raises(ValidationError) as exc_info:
            validate_for_storage(GatewayType.INECOBANK, config)

        assert exc_info.value.extra["field"] == "accounts"

    def test_arca_requires_bank_id(self):
        config = parse_provider_config(
            GatewayType.ARCA, {"accounts": {"AMD": {"username": "u", "password": "p"}}}
        )

        with pytest.raises(ValidationError) as exc_info:
            validate_for_storage(GatewayType.ARCA, config)

        assert exc_info.value.extra["field"] == "bank_id"

    def test_arca_rejects_unknown_bank(self):
        config = parse_provider_config(
            GatewayType.ARCA,
            {"bank_id": "4", "accounts": {"AMD": {"username": "u", "password": "p"}}},
        )

        with pytest.raises(ValidationError):
            validate_for_storage(GatewayType.ARCA, config)

    @pytest.mark.parametrize("bank_id", list(ARCA_BANKS))
    def test_arca_accepts_every_partner_bank(self, bank_id: str):
        config = parse_provider_config(
            GatewayType.ARCA, {"accounts": {"AMD": {"username": "u", "password": "p"}}}
        )

        validate_for_storage(GatewayType.ARCA, config, bank_id=bank_id)

    def test_idram_rejects_unsupported_language(self):
        config = parse_provider_config(GatewayType.IDRAM, {"default_language": "de"})

        with pytest.raises(ValidationError):
            validate_for_storage(GatewayType.IDRAM, config)

    def test_idram_credentials_optional_at_storage(self):
        config = parse_provider_config(GatewayType.IDRAM, {})

        validate_for_storage(GatewayType.IDRAM, config)
