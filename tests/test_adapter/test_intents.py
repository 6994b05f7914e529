"""
Gasless Intent Test Suite
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from test_mocks import (
    MOCK_ADAPTER_DATA_HASH,
    MOCK_CHAIN_ID,
    MOCK_OWNER_ACCOUNT,
    MOCK_OWNER_ADDRESS,
    MOCK_SPENDER_ADDRESS,
    MOCK_SWAP_DATA_HASH,
    MOCK_TX_ID,
    MockChainClient,
    create_bridge_context,
    create_swap_context,
)

from permitflow.engine.exceptions import NonceResolutionError
from permitflow.adapters.evm.intents import (
    BRIDGE_INTENT,
    SWAP_BRIDGE_INTENT,
    SWAP_INTENT,
    build_intent_typed_data,
    gasless_domain,
    intent_primary_type,
    sign_gasless_intent,
)
from permitflow.adapters.evm.signers import LocalAccountSigner


class TestIntentTypedData:
    """Primary type and message layout per gasless context."""

    @pytest.mark.parametrize("context,expected", [
        (create_swap_context(), SWAP_INTENT),
        (create_bridge_context(with_swap=True), SWAP_BRIDGE_INTENT),
        (create_bridge_context(with_swap=False), BRIDGE_INTENT),
    ])
    def test_primary_type(self, context, expected):
        assert intent_primary_type(context) == expected

    def test_domain_is_salted(self):
        domain = gasless_domain(MOCK_CHAIN_ID, MOCK_SPENDER_ADDRESS)
        assert domain.name == "DZapVerifier"
        assert domain.version == "1"
        assert domain.salt == keccak(text="DZap-v0.1")
        assert domain.type_fields()[-1] == {"name": "salt", "type": "bytes32"}

    def test_swap_bridge_message(self):
        typed = build_intent_typed_data(
            chain_id=MOCK_CHAIN_ID,
            verifier=MOCK_SPENDER_ADDRESS,
            user=MOCK_OWNER_ADDRESS,
            nonce=2,
            deadline=99,
            context=create_bridge_context(with_swap=True),
        )
        assert list(typed.message) == [
            "txId", "user", "nonce", "deadline", "executorFeesHash", "swapDataHash", "adapterDataHash",
        ]
        assert typed.message["txId"] == bytes.fromhex(MOCK_TX_ID[2:])
        assert typed.message["swapDataHash"] == bytes.fromhex(MOCK_SWAP_DATA_HASH[2:])
        assert typed.message["adapterDataHash"] == bytes.fromhex(MOCK_ADAPTER_DATA_HASH[2:])

    def test_bridge_message_has_no_swap_hash(self):
        typed = build_intent_typed_data(
            chain_id=MOCK_CHAIN_ID,
            verifier=MOCK_SPENDER_ADDRESS,
            user=MOCK_OWNER_ADDRESS,
            nonce=0,
            deadline=99,
            context=create_bridge_context(with_swap=False),
        )
        assert "swapDataHash" not in typed.message
        assert typed.primary_type == BRIDGE_INTENT


class TestSignGaslessIntent:
    """Nonce read from the verifier and signature over the intent."""

    @pytest.mark.asyncio
    async def test_signature_recovers_user(self):
        client = MockChainClient()
        client.set(MOCK_SPENDER_ADDRESS, "getNonce", lambda user: 11)
        context = create_swap_context()

        intent = await sign_gasless_intent(
            client=client,
            signer=LocalAccountSigner(MOCK_OWNER_ACCOUNT),
            chain_id=MOCK_CHAIN_ID,
            verifier=MOCK_SPENDER_ADDRESS,
            user=MOCK_OWNER_ADDRESS,
            deadline=1_900_000_000,
            context=context,
        )

        assert intent.nonce == 11
        assert intent.primary_type == SWAP_INTENT
        typed = build_intent_typed_data(
            chain_id=MOCK_CHAIN_ID,
            verifier=MOCK_SPENDER_ADDRESS,
            user=MOCK_OWNER_ADDRESS,
            nonce=11,
            deadline=1_900_000_000,
            context=context,
        )
        signable = encode_typed_data(full_message=typed.to_dict())
        assert Account.recover_message(signable, signature=intent.signature) == MOCK_OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_nonce_read_failure(self):
        with pytest.raises(NonceResolutionError):
            await sign_gasless_intent(
                client=MockChainClient(),
                signer=LocalAccountSigner(MOCK_OWNER_ACCOUNT),
                chain_id=MOCK_CHAIN_ID,
                verifier=MOCK_SPENDER_ADDRESS,
                user=MOCK_OWNER_ADDRESS,
                deadline=1,
                context=create_swap_context(),
            )
