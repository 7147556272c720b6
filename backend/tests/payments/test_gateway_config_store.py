"""Tests for the gateway configuration store.

Tests that:
- Secret fields are only ever stored as cipher envelopes
- Read-out masks secrets and internal use decrypts them
- Masked secrets sent back on update keep the stored ciphertext
- (type, bank_id) stays unique and referenced configs cannot be deleted
"""

import uuid

import pytest
from sqlalchemy import select

from app.core.encryption import decrypt, is_encrypted
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.modules.payments.models import GatewayType, PaymentGatewayConfig
from app.modules.payments.provider_configs import MASK_PLACEHOLDER
from app.modules.payments.service import GatewayManagerService


class TestSecretsAtRest:

    @pytest.mark.asyncio
    async def test_idram_key_encrypted_on_create(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)

        stored = record.config["idram_key"]
        assert stored != "idram-secret-key"
        assert is_encrypted(stored)
        assert decrypt(stored) == "idram-secret-key"
        # Non-secret fields stay readable
        assert record.config["idram_id"] == "110000601"

    @pytest.mark.asyncio
    async def test_nested_account_passwords_encrypted(self, session, make_gateway):
        record = await make_gateway(GatewayType.INECOBANK)

        for currency in ("AMD", "USD"):
            account = record.config["accounts"][currency]
            assert is_encrypted(account["password"])
            assert not is_encrypted(account["username"])

    @pytest.mark.asyncio
    async def test_hex_looking_password_still_encrypted(self, session, make_gateway):
        record = await make_gateway(
            GatewayType.ARCA,
            config={"accounts": {"AMD": {"username": "arca_api", "password": "abcd:1234:beef:cafe"}}},
            bank_id="2",
        )

        stored = record.config["accounts"]["AMD"]["password"]
        assert stored != "abcd:1234:beef:cafe"
        assert is_encrypted(stored)
        config = GatewayManagerService(session).get_decrypted_config(record)
        assert config.accounts.AMD.password == "abcd:1234:beef:cafe"

    @pytest.mark.asyncio
    async def test_masked_config_hides_secrets(self, session, make_gateway):
        record = await make_gateway(GatewayType.ARCA)

        masked = GatewayManagerService(session).masked_config(record)

        assert masked["accounts"]["AMD"]["password"] == MASK_PLACEHOLDER
        assert masked["accounts"]["AMD"]["username"] == "arca_api"
        assert "arca-pass" not in str(masked)

    @pytest.mark.asyncio
    async def test_decrypted_config_for_internal_use(self, session, make_gateway):
        record = await make_gateway(GatewayType.AMERIABANK)

        config = GatewayManagerService(session).get_decrypted_config(record)

        assert config.accounts.AMD.password == "lazY2k"
        assert config.client_id == "ameria-client-id"


class TestCreate:

    @pytest.mark.asyncio
    async def test_invalid_config_not_stored(self, session):
        service = GatewayManagerService(session)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_gateway(GatewayType.AMERIABANK, "Ameriabank", config={"accounts": {}})

        assert exc_info.value.extra["field"] == "client_id"
        result = await session.execute(select(PaymentGatewayConfig))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_duplicate_type_rejected(self, session, make_gateway):
        await make_gateway(GatewayType.IDRAM)

        with pytest.raises(ConflictError):
            await make_gateway(GatewayType.IDRAM)

    @pytest.mark.asyncio
    async def test_arca_banks_are_separate_gateways(self, session, make_gateway):
        first = await make_gateway(GatewayType.ARCA, bank_id="2")
        second = await make_gateway(GatewayType.ARCA, bank_id="5")

        assert {first.bank_id, second.bank_id} == {"2", "5"}
        with pytest.raises(ConflictError):
            await make_gateway(GatewayType.ARCA, bank_id="5")

    @pytest.mark.asyncio
    async def test_arca_bank_id_synced_into_config(self, session, make_gateway):
        record = await make_gateway(
            GatewayType.ARCA,
            config={"accounts": {"AMD": {"username": "u", "password": "p"}}},
            bank_id="9",
        )

        assert record.bank_id == "9"
        assert record.config["bank_id"] == "9"

    @pytest.mark.asyncio
    async def test_non_arca_gateways_have_no_bank(self, session, make_gateway):
        record = await make_gateway(GatewayType.INECOBANK, bank_id="2")

        assert record.bank_id is None


class TestUpdate:

    @pytest.mark.asyncio
    async def test_masked_secret_keeps_ciphertext(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)
        original = record.config["idram_key"]
        service = GatewayManagerService(session)

        updated = await service.update_gateway(
            record.id,
            config={"idram_id": "110000602", "idram_key": MASK_PLACEHOLDER},
        )
        await session.commit()

        assert updated.config["idram_key"] == original
        assert updated.config["idram_id"] == "110000602"

    @pytest.mark.asyncio
    async def test_omitted_secret_keeps_ciphertext(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)
        original = record.config["idram_key"]

        updated = await GatewayManagerService(session).update_gateway(
            record.id, config={"idram_id": "110000601"}
        )

        assert updated.config["idram_key"] == original

    @pytest.mark.asyncio
    async def test_new_secret_encrypted(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)

        updated = await GatewayManagerService(session).update_gateway(
            record.id, config={"idram_id": "110000601", "idram_key": "rotated-key"}
        )

        assert is_encrypted(updated.config["idram_key"])
        assert decrypt(updated.config["idram_key"]) == "rotated-key"

    @pytest.mark.asyncio
    async def test_empty_secret_clears_it(self, session, make_gateway):
        record = await make_gateway(
            GatewayType.IDRAM,
            config={"idram_id": "1", "idram_key": "k", "idram_test_key": "tk"},
        )

        updated = await GatewayManagerService(session).update_gateway(
            record.id, config={"idram_id": "1", "idram_key": MASK_PLACEHOLDER, "idram_test_key": ""}
        )

        assert "idram_test_key" not in updated.config
        assert decrypt(updated.config["idram_key"]) == "k"

    @pytest.mark.asyncio
    async def test_nested_masked_password_kept(self, session, make_gateway):
        record = await make_gateway(GatewayType.ARCA)
        original = record.config["accounts"]["AMD"]["password"]
        service = GatewayManagerService(session)

        masked = service.masked_config(record)
        masked["accounts"]["AMD"]["username"] = "arca_api_2"
        updated = await service.update_gateway(record.id, config=masked)

        assert updated.config["accounts"]["AMD"]["password"] == original
        assert updated.config["accounts"]["AMD"]["username"] == "arca_api_2"

    @pytest.mark.asyncio
    async def test_flags_updated_without_touching_config(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)
        config_before = dict(record.config)

        updated = await GatewayManagerService(session).update_gateway(
            record.id, enabled=False, position=4, name="Idram wallet"
        )

        assert updated.enabled is False
        assert updated.position == 4
        assert updated.name == "Idram wallet"
        assert updated.config == config_before

    @pytest.mark.asyncio
    async def test_arca_bank_change_collision(self, session, make_gateway):
        await make_gateway(GatewayType.ARCA, bank_id="2")
        other = await make_gateway(GatewayType.ARCA, bank_id="3")

        with pytest.raises(ConflictError):
            await GatewayManagerService(session).update_gateway(other.id, bank_id="2")

    @pytest.mark.asyncio
    async def test_arca_bank_change_moves_selector(self, session, make_gateway):
        record = await make_gateway(GatewayType.ARCA, bank_id="2")
        original = record.config["accounts"]["AMD"]["password"]

        updated = await GatewayManagerService(session).update_gateway(record.id, bank_id="11")

        assert updated.bank_id == "11"
        assert updated.config["bank_id"] == "11"
        assert updated.config["accounts"]["AMD"]["password"] == original

    @pytest.mark.asyncio
    async def test_invalid_update_rejected(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)

        with pytest.raises(ValidationError):
            await GatewayManagerService(session).update_gateway(
                record.id, config={"default_language": "fr"}
            )


class TestListAndDelete:

    @pytest.mark.asyncio
    async def test_list_ordered_by_position(self, session, make_gateway):
        await make_gateway(GatewayType.IDRAM, position=2)
        await make_gateway(GatewayType.AMERIABANK, position=0)
        await make_gateway(GatewayType.INECOBANK, position=1, enabled=False)

        service = GatewayManagerService(session)
        all_records = await service.list_gateways()
        enabled = await service.list_gateways(enabled=True)

        assert [r.type for r in all_records] == ["ameriabank", "inecobank", "idram"]
        assert [r.type for r in enabled] == ["ameriabank", "idram"]

    @pytest.mark.asyncio
    async def test_get_missing_gateway(self, session):
        with pytest.raises(NotFoundError):
            await GatewayManagerService(session).get_gateway(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_delete_unused_gateway(self, session, make_gateway):
        record = await make_gateway(GatewayType.IDRAM)
        service = GatewayManagerService(session)

        await service.delete_gateway(record.id)
        await session.commit()

        with pytest.raises(NotFoundError):
            await service.get_gateway(record.id)

    @pytest.mark.asyncio
    async def test_delete_referenced_gateway_rejected(self, session, make_gateway, make_order, make_payment):
        record = await make_gateway(GatewayType.ARCA)
        order = await make_order()
        await make_payment(order, record)

        with pytest.raises(ConflictError):
            await GatewayManagerService(session).delete_gateway(record.id)
