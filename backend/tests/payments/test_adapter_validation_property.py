"""Property-based tests for gateway adapter construction.

Tests that:
- Construction raises ConfigurationError exactly when the provider's
  validation predicate rejects the config in that mode
- The factory builds the right adapter for each gateway type
- Optional capabilities are advertised only by the adapters that have them
"""

import pytest
from hypothesis import given, settings, strategies as st

from app.core.exceptions import ConfigurationError
from app.modules.payments.gateways import (
    AmeriabankGateway,
    ArcaGateway,
    IdramGateway,
    InecobankGateway,
)
from app.modules.payments.interface import (
    SupportsCardBinding,
    SupportsDeposit,
    SupportsPreAuthorization,
    SupportsRefund,
    SupportsReverse,
    supports,
)
from app.modules.payments.models import GatewayType
from app.modules.payments.provider_configs import ARCA_BANKS
from app.modules.payments.service import PaymentGatewayFactory


optional_text = st.one_of(st.none(), st.just(""), st.text(min_size=1, max_size=12).filter(str.strip))

account_strategy = st.one_of(
    st.none(),
    st.fixed_dictionaries({"username": optional_text, "password": optional_text}),
)

currency_accounts_strategy = st.fixed_dictionaries(
    {},
    optional={"AMD": account_strategy, "USD": account_strategy},
)

bank_id_strategy = st.one_of(
    st.none(),
    st.sampled_from(list(ARCA_BANKS)),
    st.sampled_from(["0", "4", "10", "12", "acba"]),
)


def _complete(account) -> bool:
    return bool(account and account.get("username") and account.get("password"))


def _any_complete(accounts: dict) -> bool:
    return any(_complete(account) for account in accounts.values())


def _builds(gateway_cls, config: dict, test_mode: bool) -> bool:
    try:
        gateway_cls(config, test_mode=test_mode)
    except ConfigurationError:
        return False
    return True


class TestIdramValidation:

    @given(
        idram_id=optional_text,
        idram_key=optional_text,
        idram_test_id=optional_text,
        idram_test_key=optional_text,
        language=st.sampled_from(["en", "hy", "ru", "de"]),
        test_mode=st.booleans(),
    )
    @settings(max_examples=100)
    def test_construction_matches_predicate(
        self,
        idram_id,
        idram_key,
        idram_test_id,
        idram_test_key,
        language: str,
        test_mode: bool,
    ):
        config = {
            "idram_id": idram_id,
            "idram_key": idram_key,
            "idram_test_id": idram_test_id,
            "idram_test_key": idram_test_key,
            "default_language": language,
        }
        if test_mode:
            expected = bool((idram_test_id or idram_id) and (idram_test_key or idram_key))
        else:
            expected = bool(idram_id and idram_key)
        expected = expected and language in ("en", "hy", "ru")

        assert _builds(IdramGateway, config, test_mode) == expected

    def test_test_mode_falls_back_to_production_credentials(self):
        gateway = IdramGateway({"idram_id": "110000601", "idram_key": "key"}, test_mode=True)

        assert gateway.rec_account == "110000601"
        assert gateway.secret_key == "key"

    def test_test_credentials_preferred_in_test_mode(self):
        config = {
            "idram_id": "110000601",
            "idram_key": "key",
            "idram_test_id": "110000999",
            "idram_test_key": "test-key",
        }

        assert IdramGateway(config, test_mode=True).rec_account == "110000999"
        assert IdramGateway(config, test_mode=False).rec_account == "110000601"


class TestBankValidation:

    @given(client_id=optional_text, accounts=currency_accounts_strategy, test_mode=st.booleans())
    @settings(max_examples=100)
    def test_ameriabank_predicate(self, client_id, accounts: dict, test_mode: bool):
        config = {"client_id": client_id, "accounts": accounts}

        expected = bool(client_id) and _any_complete(accounts)

        assert _builds(AmeriabankGateway, config, test_mode) == expected

    @given(accounts=currency_accounts_strategy, test_mode=st.booleans())
    @settings(max_examples=100)
    def test_inecobank_predicate(self, accounts: dict, test_mode: bool):
        assert _builds(InecobankGateway, {"accounts": accounts}, test_mode) == _any_complete(accounts)

    @given(bank_id=bank_id_strategy, accounts=currency_accounts_strategy, test_mode=st.booleans())
    @settings(max_examples=100)
    def test_arca_predicate(self, bank_id, accounts: dict, test_mode: bool):
        config = {"bank_id": bank_id, "accounts": accounts}

        expected = bank_id in ARCA_BANKS and _any_complete(accounts)

        assert _builds(ArcaGateway, config, test_mode) == expected

    def test_schema_violation_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            InecobankGateway({"accounts": {"GBP": {"username": "u", "password": "p"}}})


class TestFactory:

    @pytest.mark.parametrize(
        "gateway_type, config, expected_cls",
        [
            (GatewayType.IDRAM, {"idram_id": "1", "idram_key": "k"}, IdramGateway),
            (
                GatewayType.AMERIABANK,
                {"client_id": "c", "accounts": {"AMD": {"username": "u", "password": "p"}}},
                AmeriabankGateway,
            ),
            (
                GatewayType.INECOBANK,
                {"accounts": {"AMD": {"username": "u", "password": "p"}}},
                InecobankGateway,
            ),
            (
                GatewayType.ARCA,
                {"bank_id": "1", "accounts": {"AMD": {"username": "u", "password": "p"}}},
                ArcaGateway,
            ),
        ],
    )
    def test_factory_builds_adapter_per_type(self, gateway_type, config, expected_cls):
        gateway = PaymentGatewayFactory.create(gateway_type.value, config, test_mode=True)

        assert isinstance(gateway, expected_cls)
        assert gateway.provider == gateway_type.value
        assert gateway.test_mode is True

    def test_unknown_provider_rejected(self):
        with pytest.raises(ConfigurationError):
            PaymentGatewayFactory.create("paypal", {})

    def test_supported_providers(self):
        assert set(PaymentGatewayFactory.get_supported_providers()) >= {
            "idram", "ameriabank", "inecobank", "arca",
        }


class TestCapabilities:

    @pytest.fixture
    def gateways(self):
        account = {"AMD": {"username": "u", "password": "p"}}
        return {
            "idram": IdramGateway({"idram_id": "1", "idram_key": "k"}),
            "ameriabank": AmeriabankGateway({"client_id": "c", "accounts": account}),
            "inecobank": InecobankGateway({"accounts": account}),
            "arca": ArcaGateway({"bank_id": "2", "accounts": account}),
        }

    @pytest.mark.parametrize(
        "capability, providers",
        [
            (SupportsRefund, {"ameriabank", "arca"}),
            (SupportsReverse, {"arca"}),
            (SupportsDeposit, {"arca"}),
            (SupportsPreAuthorization, {"arca"}),
            (SupportsCardBinding, {"arca"}),
        ],
    )
    def test_capability_matrix(self, gateways, capability, providers):
        advertised = {name for name, gateway in gateways.items() if supports(gateway, capability)}

        assert advertised == providers
