"""
Permit Orchestrator Test Suite

End-to-end scheme selection over a scripted chain client: native permits,
Permit2 witness transfers with derived nonces, one-to-many batches, failure
reporting with partial results and the gasless intent flow.

Usage:
    pytest tests/test_adapter/test_orchestrator.py -v
"""

import logging
import time

import pytest

from test_mocks import (
    MOCK_CHAIN_ID,
    MOCK_NATIVE_TOKEN,
    MOCK_OWNER_ACCOUNT,
    MOCK_OWNER_ADDRESS,
    MOCK_PROXY_ADDRESS,
    MOCK_PROXY_CHAIN_ID,
    MOCK_SPENDER_ADDRESS,
    MOCK_TOKEN_A,
    MOCK_TOKEN_B,
    MOCK_TOKEN_C,
    MockChainClient,
    MockWalletClient,
    ProviderError,
    create_batch_request,
    create_bridge_context,
    create_config,
    create_swap_context,
    register_allowance,
    register_nonce_bitmap,
    register_permit_token,
)

from permitflow.engine.exceptions import PackingInvariantError
from permitflow.schemas.bases import PermitStage, StatusCodes, TxnStatus
from permitflow.adapters.evm.constants import MAX_UINT48
from permitflow.adapters.evm.orchestrator import PermitOrchestrator, is_one_to_many
from permitflow.adapters.evm.packing import decode_permit_data
from permitflow.adapters.evm.schemas import PermitMode, PermitScheme, SchemeTag
from permitflow.adapters.evm.signers import LocalAccountSigner, WalletClientSigner


def _orchestrator(client, signer=None, **config):
    signer = signer or LocalAccountSigner(MOCK_OWNER_ACCOUNT)
    return PermitOrchestrator(client, signer, create_config(**config))


def _decoded(result):
    return decode_permit_data(result.permit_data)


class TestNativePermitSelection:
    """``AutoPermit`` prefers EIP-2612 when the token supports it."""

    @pytest.mark.asyncio
    async def test_auto_uses_native_permit(self):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A, nonce=5)
        before = int(time.time())

        result = await _orchestrator(client).sign_permits(create_batch_request([(MOCK_TOKEN_A, 100)]))

        assert result.is_success()
        token = result.tokens[0]
        assert token.scheme == PermitScheme.NATIVE_PERMIT
        assert token.nonce == 5
        assert before + 1800 <= token.deadline <= int(time.time()) + 1800
        scheme, payload = _decoded(token)
        assert scheme == PermitScheme.NATIVE_PERMIT
        assert payload.owner == MOCK_OWNER_ADDRESS
        assert payload.spender == MOCK_SPENDER_ADDRESS
        assert payload.value == 100
        assert payload.deadline == token.deadline
        assert payload.v in (27, 28)

    @pytest.mark.asyncio
    async def test_explicit_deadline_is_used(self):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A)
        request = create_batch_request([(MOCK_TOKEN_A, 100)], deadline=1_900_000_000)
        result = await _orchestrator(client).sign_permits(request)
        assert result.tokens[0].deadline == 1_900_000_000

    @pytest.mark.asyncio
    async def test_disabled_chain_falls_back_to_permit2(self):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A)
        register_nonce_bitmap(client, {0: 0})
        orchestrator = _orchestrator(client, eip2612_disabled_chains=[MOCK_CHAIN_ID])
        result = await orchestrator.sign_permits(create_batch_request([(MOCK_TOKEN_A, 100)]))
        assert result.tokens[0].scheme == PermitScheme.PERMIT2_WITNESS_TRANSFER
        assert client.count("DOMAIN_SEPARATOR") == 0

    @pytest.mark.asyncio
    async def test_native_currency_is_default_permit(self):
        client = MockChainClient()
        wallet = MockWalletClient()
        orchestrator = _orchestrator(client, WalletClientSigner(wallet))

        result = await orchestrator.sign_permits(create_batch_request([(MOCK_NATIVE_TOKEN, 10**18)]))

        assert result.is_success()
        scheme, payload = _decoded(result.tokens[0])
        assert scheme == PermitScheme.DEFAULT_PERMIT
        assert payload.tag == SchemeTag.NATIVE_PERMIT
        assert client.calls == []
        assert wallet.requests == []


class TestPermit2Selection:
    """Tokens without EIP-2612 go through Permit2."""

    @pytest.mark.asyncio
    async def test_witness_transfers_derive_nonces_from_one_read(self):
        client = MockChainClient()
        register_nonce_bitmap(client, {0: 0b111})
        request = create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2), (MOCK_TOKEN_C, 3)])

        result = await _orchestrator(client).sign_permits(request)

        assert result.is_success()
        assert [t.scheme for t in result.tokens] == [PermitScheme.PERMIT2_WITNESS_TRANSFER] * 3
        assert [t.nonce for t in result.tokens] == [3, 4, 5]
        assert [_decoded(t)[1].nonce for t in result.tokens] == [3, 4, 5]
        assert client.count("nonceBitmap") == 1

    @pytest.mark.asyncio
    async def test_nonce_proxy_chain(self):
        client = MockChainClient()
        client.set(MOCK_PROXY_ADDRESS, "nextNonce", 77)
        request = create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)], chain_id=MOCK_PROXY_CHAIN_ID)

        result = await _orchestrator(client).sign_permits(request)

        assert [t.nonce for t in result.tokens] == [77, 78]
        assert client.count("nextNonce") == 1
        assert client.count("nonceBitmap") == 0

    @pytest.mark.asyncio
    async def test_permit_single(self):
        client = MockChainClient()
        register_allowance(client, nonce=4)
        request = create_batch_request([(MOCK_TOKEN_A, 500)], mode=PermitMode.PERMIT_SINGLE)

        result = await _orchestrator(client).sign_permits(request)

        scheme, payload = _decoded(result.tokens[0])
        assert scheme == PermitScheme.PERMIT2_SINGLE
        assert payload.amount == 500
        assert payload.nonce == 4
        assert payload.expiration == MAX_UINT48
        assert client.count("DOMAIN_SEPARATOR") == 0

    @pytest.mark.asyncio
    async def test_permit_single_custom_expiration(self):
        client = MockChainClient()
        register_allowance(client)
        request = create_batch_request([(MOCK_TOKEN_A, 500)], mode=PermitMode.PERMIT_SINGLE, expiration=12345)
        result = await _orchestrator(client).sign_permits(request)
        assert _decoded(result.tokens[0])[1].expiration == 12345

    @pytest.mark.asyncio
    async def test_mixed_token_modes(self):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A)
        register_nonce_bitmap(client)
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)],
            token_modes=[PermitMode.EIP2612, PermitMode.PERMIT_WITNESS_TRANSFER],
        )
        result = await _orchestrator(client).sign_permits(request)
        assert [t.scheme for t in result.tokens] == [
            PermitScheme.NATIVE_PERMIT,
            PermitScheme.PERMIT2_WITNESS_TRANSFER,
        ]
        assert result.tokens[1].nonce == 0

    @pytest.mark.asyncio
    async def test_witness_binds_gasless_transaction(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        orchestrator = _orchestrator(client)

        def request(tx_id):
            return create_batch_request(
                [(MOCK_TOKEN_A, 1)], deadline=1_900_000_000, gasless=create_swap_context(tx_id),
            )

        first = await orchestrator.sign_permits(request("0x" + "0a" * 32))
        second = await orchestrator.sign_permits(request("0x" + "0b" * 32))
        assert first.tokens[0].permit_data != second.tokens[0].permit_data

    @pytest.mark.asyncio
    async def test_bridge_without_swap_hash_uses_transfer_witness(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        wallet = MockWalletClient()
        request = create_batch_request([(MOCK_TOKEN_A, 1)], gasless=create_bridge_context(with_swap=False))

        result = await _orchestrator(client, WalletClientSigner(wallet)).sign_permits(request)

        assert result.is_success()
        witness = wallet.requests[0]["message"]["witness"]
        assert witness == {"owner": MOCK_OWNER_ADDRESS, "recipient": MOCK_SPENDER_ADDRESS}
        assert "DZapTransferWitness" in wallet.requests[0]["types"]
        assert "DZapBridgeWitness" not in wallet.requests[0]["types"]


class TestOneToMany:
    """Repeated leading token: one signature over the aggregated amount."""

    def test_detection_is_case_insensitive(self):
        request = create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_A.lower(), 2)])
        assert is_one_to_many(request) is True
        assert is_one_to_many(create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)])) is False
        assert is_one_to_many(create_batch_request([(MOCK_TOKEN_A, 1)])) is False

    @pytest.mark.asyncio
    async def test_leg_zero_signs_total_and_followers_default(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        wallet = MockWalletClient()
        request = create_batch_request([(MOCK_TOKEN_A, 100), (MOCK_TOKEN_A, 200), (MOCK_TOKEN_A, 300)])

        result = await _orchestrator(client, WalletClientSigner(wallet)).sign_permits(request)

        assert result.is_success()
        assert len(wallet.requests) == 1
        leg0 = result.tokens[0]
        assert leg0.amount == 600
        scheme, payload = _decoded(leg0)
        assert scheme == PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER
        assert payload.permitted == [(MOCK_TOKEN_A, 600)]
        for follower in result.tokens[1:]:
            scheme, payload = _decoded(follower)
            assert scheme == PermitScheme.DEFAULT_PERMIT
            assert payload.tag == SchemeTag.PERMIT2_SINGLE
        assert [t.amount for t in result.tokens[1:]] == [200, 300]

    @pytest.mark.asyncio
    async def test_native_leg_zero_keeps_native_family(self):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A)
        request = create_batch_request([(MOCK_TOKEN_A, 100), (MOCK_TOKEN_A, 200)])

        result = await _orchestrator(client).sign_permits(request)

        assert result.tokens[0].scheme == PermitScheme.NATIVE_PERMIT
        assert _decoded(result.tokens[0])[1].value == 300
        assert _decoded(result.tokens[1])[1].tag == SchemeTag.NATIVE_PERMIT


class TestBatchMode:
    """Explicit batch mode signs every non-native token at once."""

    @pytest.mark.asyncio
    async def test_single_batch_signature(self):
        client = MockChainClient()
        register_nonce_bitmap(client, {0: 0b1})
        wallet = MockWalletClient()
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1), (MOCK_NATIVE_TOKEN, 5), (MOCK_TOKEN_B, 2)],
            mode=PermitMode.PERMIT_BATCH_WITNESS_TRANSFER,
        )

        result = await _orchestrator(client, WalletClientSigner(wallet)).sign_permits(request)

        assert result.is_success()
        assert result.tokens == []
        assert len(wallet.requests) == 1
        scheme, payload = decode_permit_data(result.batch_permit_data)
        assert scheme == PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER
        assert payload.permitted == [(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)]
        assert payload.nonce == 1

    @pytest.mark.asyncio
    async def test_per_token_batch_override(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1)], token_modes=[PermitMode.PERMIT_BATCH_WITNESS_TRANSFER],
        )
        result = await _orchestrator(client).sign_permits(request)
        scheme, payload = _decoded(result.tokens[0])
        assert scheme == PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER
        assert payload.permitted == [(MOCK_TOKEN_A, 1)]


class TestFailures:
    """The first failure stops the batch and reports partial results."""

    @pytest.mark.asyncio
    async def test_forced_native_on_unsupported_token(self, caplog):
        client = MockChainClient()
        register_permit_token(client, MOCK_TOKEN_A)
        request = create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)], mode=PermitMode.EIP2612)

        with caplog.at_level(logging.ERROR, logger="permitflow.adapters.evm.orchestrator"):
            result = await _orchestrator(client).sign_permits(request)

        assert result.status == TxnStatus.ERROR
        assert result.code == StatusCodes.ERROR
        assert result.stage == PermitStage.CAPABILITY_PROBE
        assert result.error_kind == "CapabilityNotSupportedError"
        assert result.failed_index == 1
        assert [t.token for t in result.tokens] == [MOCK_TOKEN_A]
        assert "capability_probe" in caplog.text

    @pytest.mark.asyncio
    async def test_user_rejection_keeps_partial_results(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        wallet = MockWalletClient(error=ProviderError("User rejected the request.", 4001))
        request = create_batch_request([(MOCK_NATIVE_TOKEN, 1), (MOCK_TOKEN_A, 2)])

        result = await _orchestrator(client, WalletClientSigner(wallet)).sign_permits(request)

        assert result.status == TxnStatus.REJECTED
        assert result.code == StatusCodes.USER_REJECTED_REQUEST
        assert result.stage == PermitStage.SIGNING
        assert len(result.tokens) == 1
        assert result.tokens[0].scheme == PermitScheme.DEFAULT_PERMIT
        assert len(wallet.requests) == 1

    @pytest.mark.asyncio
    async def test_nonce_failure(self):
        client = MockChainClient()
        result = await _orchestrator(client).sign_permits(create_batch_request([(MOCK_TOKEN_A, 1)]))
        assert result.status == TxnStatus.ERROR
        assert result.stage == PermitStage.NONCE_RESOLUTION

    @pytest.mark.asyncio
    async def test_token_modes_length_mismatch_raises(self):
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)], token_modes=[PermitMode.AUTO],
        )
        with pytest.raises(PackingInvariantError):
            await _orchestrator(MockChainClient()).sign_permits(request)

    @pytest.mark.asyncio
    async def test_empty_request(self):
        client = MockChainClient()
        result = await _orchestrator(client).sign_permits(create_batch_request([]))
        assert result.is_success()
        assert result.tokens == []
        assert client.calls == []


class TestSignatureCallback:
    """``on_signature`` sees every non-native result as it is produced."""

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        seen = []
        request = create_batch_request([(MOCK_NATIVE_TOKEN, 1), (MOCK_TOKEN_A, 2), (MOCK_TOKEN_B, 3)])

        await _orchestrator(client).sign_permits(request, on_signature=seen.append)

        assert [r.position_index for r in seen] == [1, 2]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        seen = []

        async def on_signature(result):
            seen.append(result.token)

        await _orchestrator(client).sign_permits(create_batch_request([(MOCK_TOKEN_A, 2)]), on_signature)
        assert seen == [MOCK_TOKEN_A]

    @pytest.mark.asyncio
    async def test_batch_mode_reports_batch_result_once(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        seen = []
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)], mode=PermitMode.PERMIT_BATCH_WITNESS_TRANSFER,
        )

        result = await _orchestrator(client).sign_permits(request, on_signature=seen.append)

        assert result.is_success()
        assert seen == [result]
        assert seen[0].batch_permit_data is not None

    @pytest.mark.asyncio
    async def test_batch_mode_failure_skips_callback(self):
        seen = []
        request = create_batch_request([(MOCK_TOKEN_A, 1)], mode=PermitMode.PERMIT_BATCH_WITNESS_TRANSFER)

        result = await _orchestrator(MockChainClient()).sign_permits(request, on_signature=seen.append)

        assert result.status == TxnStatus.ERROR
        assert seen == []


class TestGaslessUserIntent:
    """Gasless authorization: verifier intent or one Permit2 batch."""

    @pytest.mark.asyncio
    async def test_native_mode_signs_intent(self):
        client = MockChainClient()
        client.set(MOCK_SPENDER_ADDRESS, "getNonce", 3)
        request = create_batch_request(
            [(MOCK_TOKEN_A, 1)], mode=PermitMode.EIP2612, gasless=create_swap_context(), deadline=1_900_000_000,
        )

        result = await _orchestrator(client).sign_gasless_user_intent(request)

        assert result.is_success()
        assert result.intent.nonce == 3
        assert result.intent.deadline == 1_900_000_000
        assert result.intent.primary_type == "SignedGasLessSwapData"
        assert len(bytes.fromhex(result.intent.signature[2:])) == 65

    @pytest.mark.asyncio
    async def test_permit2_mode_signs_batch(self):
        client = MockChainClient()
        register_nonce_bitmap(client)
        wallet = MockWalletClient()
        request = create_batch_request([(MOCK_TOKEN_A, 1), (MOCK_TOKEN_B, 2)], gasless=create_bridge_context())

        result = await _orchestrator(client, WalletClientSigner(wallet)).sign_gasless_user_intent(request)

        assert result.intent is None
        scheme, payload = decode_permit_data(result.batch_permit_data)
        assert scheme == PermitScheme.PERMIT2_BATCH_WITNESS_TRANSFER
        assert len(payload.permitted) == 2
        assert wallet.requests[0]["message"]["witness"]["user"] == MOCK_OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_intent_nonce_failure(self):
        request = create_batch_request([(MOCK_TOKEN_A, 1)], mode=PermitMode.EIP2612, gasless=create_swap_context())
        result = await _orchestrator(MockChainClient()).sign_gasless_user_intent(request)
        assert result.status == TxnStatus.ERROR
        assert result.stage == PermitStage.NONCE_RESOLUTION

    @pytest.mark.asyncio
    async def test_intent_packing_error_is_raised(self, monkeypatch):
        async def broken_intent(**kwargs):
            raise PackingInvariantError("signature must be 65 bytes")

        monkeypatch.setattr("permitflow.adapters.evm.orchestrator.sign_gasless_intent", broken_intent)
        request = create_batch_request([(MOCK_TOKEN_A, 1)], mode=PermitMode.EIP2612, gasless=create_swap_context())

        with pytest.raises(PackingInvariantError):
            await _orchestrator(MockChainClient()).sign_gasless_user_intent(request)

    @pytest.mark.asyncio
    async def test_requires_gasless_context(self):
        with pytest.raises(ValueError):
            await _orchestrator(MockChainClient()).sign_gasless_user_intent(create_batch_request())
