"""
test_config.py - Tests for the configuration store and environment settings.
"""

import pytest
from pydantic import ValidationError

from tx_sender.config import (
    ConnectionContext,
    DynamicComputeUnits,
    DynamicFee,
    ExactComputeUnits,
    ExactFee,
    FeeMode,
    Network,
    NoFee,
    TransactionConfig,
    TxSenderConfig,
    TxSenderSettings,
    configure_from_settings,
    get_config,
    network_from_genesis_hash,
    reload_settings,
    set_compute_unit_limit_strategy,
    set_compute_unit_margin_multiplier,
    set_jito_tip_setting,
    set_priority_fee_setting,
    set_rpc,
)
from tx_sender.exceptions import ConnectionNotInitializedError, InvalidConfigError, RPCError
from tx_sender.percentile import Percentile

from conftest import make_rpc


class TestDefaults:
    def test_transaction_defaults(self):
        tc = TransactionConfig()
        assert tc.priority_fee == DynamicFee(max_cap_lamports=4_000_000)
        assert tc.jito_tip == DynamicFee(max_cap_lamports=4_000_000)
        assert tc.compute_unit_margin_multiplier == 1.1
        assert isinstance(tc.compute_unit_limit, DynamicComputeUnits)

    def test_connection_defaults(self):
        ctx = ConnectionContext(rpc_url="https://rpc.example")
        assert ctx.poll_interval_ms == 0
        assert ctx.resend_on_poll is True
        assert ctx.confirmation_timeout_ms == 90_000
        assert ctx.supports_percentile_query is False
        assert ctx.network == Network.UNKNOWN

    def test_connection_is_frozen(self):
        ctx = ConnectionContext(rpc_url="https://rpc.example")
        with pytest.raises(ValidationError):
            ctx.rpc_url = "https://other.example"


class TestConnectionNotInitialized:
    def test_require_connection_before_set_rpc(self):
        with pytest.raises(ConnectionNotInitializedError) as exc_info:
            get_config().require_connection()
        assert "set_rpc()" in str(exc_info.value)
        assert exc_info.value.error_code == "CONFIG_002"

    def test_fresh_config_has_no_connection(self):
        with pytest.raises(ConnectionNotInitializedError):
            TxSenderConfig().require_connection()


class TestSetRpc:
    @pytest.mark.asyncio
    async def test_explicit_network_skips_genesis_lookup(self):
        rpc = make_rpc()
        ctx = await set_rpc("https://rpc.example", network=Network.DEVNET, rpc=rpc)
        assert ctx.network == Network.DEVNET
        rpc.get_genesis_hash.assert_not_called()
        assert get_config().require_connection() is ctx

    @pytest.mark.asyncio
    async def test_network_detected_from_genesis_hash(self):
        rpc = make_rpc()
        ctx = await set_rpc("https://rpc.example", rpc=rpc)
        assert ctx.network == Network.MAINNET
        assert ctx.is_mainnet
        assert ctx.genesis_hash == "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d"

    @pytest.mark.asyncio
    async def test_unknown_genesis_hash(self):
        rpc = make_rpc()
        rpc.get_genesis_hash.return_value = "11111111111111111111111111111111"
        ctx = await set_rpc("http://localhost:8899", rpc=rpc)
        assert ctx.network == Network.UNKNOWN

    @pytest.mark.asyncio
    async def test_options_are_stored(self):
        ctx = await set_rpc(
            "https://rpc.example",
            supports_percentile_query=True,
            poll_interval_ms=500,
            resend_on_poll=False,
            ws_url="wss://rpc.example",
            network=Network.MAINNET,
        )
        assert ctx.supports_percentile_query is True
        assert ctx.poll_interval_ms == 500
        assert ctx.resend_on_poll is False
        assert ctx.ws_url == "wss://rpc.example"

    @pytest.mark.asyncio
    async def test_reconfiguration_replaces_context(self):
        first = await set_rpc("https://one.example", network=Network.MAINNET)
        second = await set_rpc("https://two.example", network=Network.DEVNET)
        assert get_config().connection is second
        assert first.rpc_url == "https://one.example"

    @pytest.mark.asyncio
    async def test_explicit_config_leaves_default_untouched(self):
        cfg = TxSenderConfig()
        await set_rpc("https://rpc.example", network=Network.MAINNET, config=cfg)
        assert cfg.connection is not None
        assert get_config().connection is None

    @pytest.mark.asyncio
    async def test_invalid_url_rejected(self):
        with pytest.raises(InvalidConfigError):
            await set_rpc("ftp://rpc.example", network=Network.MAINNET)

    @pytest.mark.asyncio
    async def test_invalid_ws_url_rejected(self):
        with pytest.raises(InvalidConfigError):
            await set_rpc("https://rpc.example", ws_url="https://rpc.example", network=Network.MAINNET)

    @pytest.mark.asyncio
    async def test_genesis_failure_propagates(self):
        rpc = make_rpc()
        rpc.get_genesis_hash.side_effect = RPCError("node down")
        with pytest.raises(RPCError):
            await set_rpc("https://rpc.example", rpc=rpc)
        assert get_config().connection is None


class TestSetters:
    def test_priority_fee_setting_is_idempotent(self):
        setting = ExactFee(amount_lamports=5_000)
        first = set_priority_fee_setting(setting)
        second = set_priority_fee_setting(setting)
        assert first == second
        assert get_config().transaction.priority_fee == setting

    def test_setter_accepts_plain_dict(self):
        set_jito_tip_setting({"type": "dynamic", "percentile": "75"})
        tip = get_config().transaction.jito_tip
        assert isinstance(tip, DynamicFee)
        assert tip.percentile == Percentile.P75
        assert tip.max_cap_lamports is None

    def test_setters_are_independent(self):
        set_priority_fee_setting(NoFee())
        set_jito_tip_setting(ExactFee(amount_lamports=1_000))
        tc = get_config().transaction
        assert tc.priority_fee == NoFee()
        assert tc.jito_tip == ExactFee(amount_lamports=1_000)

    def test_margin_multiplier(self):
        set_compute_unit_margin_multiplier(1.25)
        assert get_config().transaction.compute_unit_margin_multiplier == 1.25

    @pytest.mark.parametrize("bad", [1.0, 0.5, -2.0])
    def test_margin_must_exceed_one(self, bad):
        with pytest.raises(InvalidConfigError) as exc_info:
            set_compute_unit_margin_multiplier(bad)
        assert exc_info.value.config_key == "compute_unit_margin_multiplier"
        assert get_config().transaction.compute_unit_margin_multiplier == 1.1

    def test_negative_exact_fee_rejected(self):
        with pytest.raises(ValidationError):
            ExactFee(amount_lamports=-1)

    def test_compute_unit_limit_strategy(self):
        set_compute_unit_limit_strategy(ExactComputeUnits(units=300_000))
        assert get_config().transaction.compute_unit_limit.units == 300_000

    def test_exact_compute_units_bounded(self):
        with pytest.raises(ValidationError):
            ExactComputeUnits(units=1_400_001)

    def test_setter_with_explicit_config(self):
        cfg = TxSenderConfig()
        set_priority_fee_setting(NoFee(), config=cfg)
        assert cfg.transaction.priority_fee == NoFee()
        assert get_config().transaction.priority_fee != NoFee()


class TestGenesisMapping:
    def test_known_hashes(self):
        assert network_from_genesis_hash("EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG") == Network.DEVNET
        assert network_from_genesis_hash("4uhcVJyU9pJkvQyS88uRDiswHXSCkY3zQawwpjk2NsNY") == Network.TESTNET

    def test_unknown_hash(self):
        assert network_from_genesis_hash("nope") == Network.UNKNOWN


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TX_SENDER_RPC_URL", raising=False)
        settings = TxSenderSettings()
        assert settings.rpc_url is None
        assert settings.priority_fee_mode == FeeMode.DYNAMIC
        tc = settings.transaction_config()
        assert tc.priority_fee == DynamicFee(max_cap_lamports=4_000_000)

    def test_exact_fee_from_environment(self, monkeypatch):
        monkeypatch.setenv("TX_SENDER_PRIORITY_FEE_MODE", "exact")
        monkeypatch.setenv("TX_SENDER_PRIORITY_FEE_LAMPORTS", "5000")
        monkeypatch.setenv("TX_SENDER_JITO_TIP_MODE", "none")
        monkeypatch.setenv("TX_SENDER_COMPUTE_UNITS", "250000")
        tc = TxSenderSettings().transaction_config()
        assert tc.priority_fee == ExactFee(amount_lamports=5_000)
        assert tc.jito_tip == NoFee()
        assert tc.compute_unit_limit == ExactComputeUnits(units=250_000)

    def test_exact_mode_requires_amount(self):
        with pytest.raises(ValidationError):
            TxSenderSettings(priority_fee_mode=FeeMode.EXACT)

    def test_empty_strings_are_unset(self, monkeypatch):
        monkeypatch.setenv("TX_SENDER_WS_URL", "")
        monkeypatch.setenv("TX_SENDER_NETWORK", "")
        settings = TxSenderSettings()
        assert settings.ws_url is None
        assert settings.network is None

    def test_reload_settings_rereads_environment(self, monkeypatch):
        monkeypatch.setenv("TX_SENDER_POLL_INTERVAL_MS", "100")
        assert reload_settings().poll_interval_ms == 100
        monkeypatch.setenv("TX_SENDER_POLL_INTERVAL_MS", "200")
        assert reload_settings().poll_interval_ms == 200

    def test_logging_settings(self, monkeypatch):
        monkeypatch.setenv("TX_SENDER_LOG_LEVEL", "DEBUG")
        settings = TxSenderSettings()
        assert settings.logging.level.value == "DEBUG"

    @pytest.mark.asyncio
    async def test_configure_from_settings(self):
        settings = TxSenderSettings(
            rpc_url="https://rpc.example",
            network=Network.DEVNET,
            poll_interval_ms=250,
            jito_tip_mode=FeeMode.NONE,
        )
        cfg = TxSenderConfig()
        await configure_from_settings(settings, config=cfg)
        assert cfg.require_connection().network == Network.DEVNET
        assert cfg.connection.poll_interval_ms == 250
        assert cfg.transaction.jito_tip == NoFee()

    @pytest.mark.asyncio
    async def test_configure_without_rpc_url(self):
        cfg = TxSenderConfig()
        await configure_from_settings(TxSenderSettings(rpc_url=None), config=cfg)
        assert cfg.connection is None

    @pytest.mark.asyncio
    async def test_failed_genesis_lookup_leaves_config_untouched(self):
        settings = TxSenderSettings(rpc_url="https://rpc.example", jito_tip_mode=FeeMode.NONE)
        rpc = make_rpc()
        rpc.get_genesis_hash.side_effect = RPCError("node unreachable")
        cfg = TxSenderConfig()
        before = cfg.transaction

        with pytest.raises(RPCError):
            await configure_from_settings(settings, config=cfg, rpc=rpc)

        assert cfg.connection is None
        assert cfg.transaction is before
        assert cfg.transaction.jito_tip == DynamicFee(max_cap_lamports=4_000_000)
