"""Per-provider configuration schemas.

Each provider's config bundle is a pydantic model. Secret fields are
declared with SecretField(), which marks them in the field's schema extra;
the config store walks these markers to encrypt on write, decrypt for
internal use, and mask on read-out.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.modules.payments.models import GatewayType

MASK_PLACEHOLDER = "***"

SUPPORTED_CURRENCIES = ("AMD", "USD", "EUR", "RUB")

# ArCa partner banks keyed by bank selector
ARCA_BANKS: dict[str, str] = {
    "1": "ACBA Bank",
    "2": "Ardshinbank",
    "3": "Evoca Bank",
    "5": "Armswissbank",
    "6": "Byblos Bank",
    "7": "Araratbank",
    "8": "Armeconombank",
    "9": "IDBank",
    "11": "Convers Bank",
}

IDRAM_LANGUAGES = ("en", "hy", "ru")


def SecretField(default: Any = None, **kwargs: Any) -> Any:
    """Declare a field whose value is stored encrypted."""
    return Field(default, json_schema_extra={"secret": True}, **kwargs)


def is_secret_field(model_cls: type[BaseModel], name: str) -> bool:
    extra = model_cls.model_fields[name].json_schema_extra
    return isinstance(extra, dict) and bool(extra.get("secret"))


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProviderConfig(_ConfigModel):
    """Base for provider config bundles."""

    success_url: Optional[str] = None
    fail_url: Optional[str] = None


class CurrencyAccount(_ConfigModel):
    """Merchant credentials for one currency."""

    username: Optional[str] = None
    password: Optional[str] = SecretField()

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)


class CurrencyAccounts(_ConfigModel):
    AMD: Optional[CurrencyAccount] = None
    USD: Optional[CurrencyAccount] = None
    EUR: Optional[CurrencyAccount] = None
    RUB: Optional[CurrencyAccount] = None

    def for_currency(self, currency: str) -> Optional[CurrencyAccount]:
        return getattr(self, currency.upper(), None) if currency.upper() in SUPPORTED_CURRENCIES else None

    def first_complete(self) -> Optional[CurrencyAccount]:
        for currency in SUPPORTED_CURRENCIES:
            account = getattr(self, currency)
            if account is not None and account.is_complete:
                return account
        return None


class IdramConfig(ProviderConfig):
    idram_id: Optional[str] = None
    idram_key: Optional[str] = SecretField()
    idram_test_id: Optional[str] = None
    idram_test_key: Optional[str] = SecretField()
    rocket_line: bool = False
    default_language: str = "en"
    result_url: Optional[str] = None


class AmeriabankConfig(ProviderConfig):
    client_id: Optional[str] = None
    accounts: CurrencyAccounts = Field(default_factory=CurrencyAccounts)
    min_test_order_id: Optional[int] = None
    max_test_order_id: Optional[int] = None
    result_url: Optional[str] = None


class InecobankConfig(ProviderConfig):
    accounts: CurrencyAccounts = Field(default_factory=CurrencyAccounts)


class ArcaConfig(ProviderConfig):
    bank_id: Optional[str] = None
    accounts: CurrencyAccounts = Field(default_factory=CurrencyAccounts)
    test_port: Optional[int] = None


PROVIDER_CONFIG_SCHEMAS: dict[GatewayType, type[ProviderConfig]] = {
    GatewayType.IDRAM: IdramConfig,
    GatewayType.AMERIABANK: AmeriabankConfig,
    GatewayType.INECOBANK: InecobankConfig,
    GatewayType.ARCA: ArcaConfig,
}


def transform_secrets(model: BaseModel, fn: Callable[[str, Optional[str]], Optional[str]], path: str = "") -> BaseModel:
    """Return a copy of a config model with every secret field transformed.

    Args:
        model: Config model instance
        fn: Called with (dotted field path, value) for each secret field
        path: Prefix used for nested models

    Returns:
        A new model instance
    """
    updates: dict[str, Any] = {}
    for name in type(model).model_fields:
        value = getattr(model, name)
        field_path = f"{path}.{name}" if path else name
        if is_secret_field(type(model), name):
            updates[name] = fn(field_path, value)
        elif isinstance(value, BaseModel):
            updates[name] = transform_secrets(value, fn, field_path)
    return model.model_copy(update=updates)


def secret_paths(model_cls: type[BaseModel], path: str = "") -> list[str]:
    """List the dotted paths of all secret fields declared on a schema."""
    paths = []
    for name, field in model_cls.model_fields.items():
        field_path = f"{path}.{name}" if path else name
        if is_secret_field(model_cls, name):
            paths.append(field_path)
            continue
        annotation = field.annotation
        nested = getattr(annotation, "__args__", (annotation,))
        for candidate in nested:
            if isinstance(candidate, type) and issubclass(candidate, BaseModel):
                paths.extend(secret_paths(candidate, field_path))
    return paths


def parse_provider_config(gateway_type: GatewayType, raw: Optional[dict]) -> ProviderConfig:
    """Parse a raw config bundle into the provider's schema.

    Raises:
        ValidationError: Naming the provider and the offending field
    """
    gateway_type = GatewayType(gateway_type)
    schema = PROVIDER_CONFIG_SCHEMAS[gateway_type]
    try:
        return schema.model_validate(raw or {})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "config"
        raise ValidationError(
            f"Invalid {gateway_type.value} configuration: {field}: {first.get('msg')}",
            provider=gateway_type.value,
            field=field,
        ) from e


def validate_for_storage(
    gateway_type: GatewayType,
    config: ProviderConfig,
    bank_id: Optional[str] = None,
) -> None:
    """Structural checks run before a config is persisted.

    Raises:
        ValidationError: Naming the provider and the missing or invalid field
    """
    provider = GatewayType(gateway_type).value

    def fail(field: str, message: str) -> None:
        raise ValidationError(
            f"Invalid {provider} configuration: {message}",
            provider=provider,
            field=field,
        )

    if gateway_type == GatewayType.AMERIABANK:
        if not config.client_id:
            fail("client_id", "client_id is required")
    elif gateway_type == GatewayType.INECOBANK:
        if not _has_any_account(config.accounts):
            fail("accounts", "at least one currency account is required")
    elif gateway_type == GatewayType.ARCA:
        selector = bank_id or config.bank_id
        if not selector:
            fail("bank_id", "bank_id is required")
        if selector not in ARCA_BANKS:
            fail("bank_id", f"bank_id must be one of {', '.join(ARCA_BANKS)}")
        if not _has_any_account(config.accounts):
            fail("accounts", "at least one currency account is required")
    elif gateway_type == GatewayType.IDRAM:
        if config.default_language not in IDRAM_LANGUAGES:
            fail("default_language", f"default_language must be one of {', '.join(IDRAM_LANGUAGES)}")


def _has_any_account(accounts: CurrencyAccounts) -> bool:
    return any(getattr(accounts, currency) is not None for currency in SUPPORTED_CURRENCIES)
