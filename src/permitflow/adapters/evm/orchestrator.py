"""
Permit Orchestrator

Chooses an authorization scheme for every input token of a transaction,
drives the matching signing flow and collects the packed permit data.

Per token, in order:
    1. Native-currency sentinel: ``DefaultPermit`` (tag 0), nothing to sign.
    2. Follower leg of a one-to-many batch: ``DefaultPermit`` of the family
       chosen for leg 0.
    3. Mode ``EIP2612Permit`` or ``AutoPermit``: probe the token.  Native
       permit when forced, or when auto and supported.  A forced native mode
       on an unsupported token fails.
    4. Otherwise Permit2: batch witness transfer for leg 0 of a one-to-many
       batch, ``PermitSingle`` when requested, witness transfer otherwise.

Tokens are processed strictly in order.  The first failure stops the batch;
the result then carries the tokens resolved so far together with the status,
code and stage of the failure.  ``PackingInvariantError`` is a programming
error and is raised instead of being reported.
"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

from ...engine.exceptions import (
    CapabilityNotSupportedError,
    PackingInvariantError,
    PermitError,
    UserRejectedError,
)
from ...schemas.bases import StatusCodes, TxnStatus
from .capabilities import probe_native_permit_support
from .chain import ReadOnlyChainClient
from .constants import MAX_UINT48, PermitConfig, generate_deadline
from .intents import sign_gasless_intent
from .nonces import NonceResolver
from .packing import DEFAULT_PERMIT2_DATA, DEFAULT_PERMIT_DATA, to_hex
from .schemas import (
    PermitBatchRequest,
    PermitBatchResult,
    PermitMode,
    PermitScheme,
    TokenAuthorizationRequest,
    TokenPermitResult,
)
from .signatures import (
    SignedPermit,
    select_witness,
    sign_batch_witness_transfer,
    sign_native_permit,
    sign_permit_single,
    sign_witness_transfer,
)
from .signers import SignerHandle

logger = logging.getLogger(__name__)

SignatureCallback = Callable[[Union[TokenPermitResult, PermitBatchResult]], Union[None, Awaitable[None]]]


async def _notify(on_signature: Optional[SignatureCallback], result) -> None:
    if on_signature is None:
        return
    outcome = on_signature(result)
    if inspect.isawaitable(outcome):
        await outcome


def is_one_to_many(request: PermitBatchRequest) -> bool:
    """True when the first two input tokens are the same address."""
    tokens = request.tokens
    return len(tokens) > 1 and tokens[0].address.lower() == tokens[1].address.lower()


class _NonceAnchor:
    """First Permit2 nonce resolved in a batch; later tokens derive from it."""

    def __init__(self, resolver: NonceResolver):
        self.resolver = resolver
        self.nonce: Optional[int] = None
        self.index: Optional[int] = None

    async def nonce_for(self, owner: str, position_index: int) -> int:
        if self.nonce is None:
            self.nonce = await self.resolver.resolve(owner)
            self.index = position_index
            return self.nonce
        return self.resolver.derive(self.nonce, position_index - self.index)


class PermitOrchestrator:
    """
    Drives permit negotiation for one chain.

    Args:
        client: Read-only chain client of the request's chain.
        signer: Local account or wallet client handle.
        config: Engine configuration; defaults to ``PermitConfig()``.

    Example:
        orchestrator = PermitOrchestrator(client, LocalAccountSigner(account))
        result = await orchestrator.sign_permits(PermitBatchRequest(
            chain_id=8453, owner=account.address, spender=router,
            tokens=[TokenAmount(address=usdc, amount=1_000_000)],
        ))
    """

    def __init__(
        self,
        client: ReadOnlyChainClient,
        signer: SignerHandle,
        config: Optional[PermitConfig] = None,
    ):
        self.client = client
        self.signer = signer
        self.config = config or PermitConfig()

    def _resolver(self, chain_id: int) -> NonceResolver:
        return NonceResolver(
            self.client,
            self.config.get_permit2_address(chain_id),
            self.config.get_proxy_address(chain_id),
            self.config.nonce_scan_max_words,
        )

    def _modes(self, request: PermitBatchRequest) -> List[PermitMode]:
        if request.token_modes is None:
            return [request.mode] * len(request.tokens)
        if len(request.token_modes) != len(request.tokens):
            raise PackingInvariantError(
                f"token_modes has {len(request.token_modes)} entries for {len(request.tokens)} tokens"
            )
        return list(request.token_modes)

    def _deadline(self, request: PermitBatchRequest) -> int:
        if request.deadline is not None:
            return request.deadline
        return generate_deadline(self.config.signature_expiry_secs)

    async def sign_permits(
        self,
        request: PermitBatchRequest,
        on_signature: Optional[SignatureCallback] = None,
    ) -> PermitBatchResult:
        """
        Resolve permit data for every token of ``request``.

        Args:
            request: Tokens, owner, spender and requested mode.
            on_signature: Called with each non-native token result as soon as
                          it is resolved (sync or async).  A single batch
                          signature calls it once with the batch result.

        Returns:
            PermitBatchResult. On failure ``tokens`` holds the results
            resolved before the failing token.

        Raises:
            PackingInvariantError: Internal invariant broken (never reported
                as a status).
        """
        modes = self._modes(request)
        if not request.tokens:
            return PermitBatchResult(status=TxnStatus.SUCCESS, code=StatusCodes.SUCCESS)

        if request.mode == PermitMode.PERMIT_BATCH_WITNESS_TRANSFER and request.token_modes is None:
            return await self._sign_single_batch(request, on_signature)

        one_to_many = is_one_to_many(request)
        total_amount = sum(token.amount for token in request.tokens)
        deadline = self._deadline(request)
        anchor = _NonceAnchor(self._resolver(request.chain_id))
        leg0_scheme: Optional[PermitScheme] = None
        results: List[TokenPermitResult] = []

        for index, (token, mode) in enumerate(zip(request.tokens, modes)):
            auth = TokenAuthorizationRequest(
                token=token.address,
                amount=total_amount if one_to_many and index == 0 else token.amount,
                chain_id=request.chain_id,
                owner=request.owner,
                spender=request.spender,
                position_index=index,
            )
            try:
                if self.config.is_native_token(auth.token):
                    result = self._default_result(auth, DEFAULT_PERMIT_DATA)
                elif one_to_many and index > 0:
                    family = DEFAULT_PERMIT_DATA if leg0_scheme == PermitScheme.NATIVE_PERMIT else DEFAULT_PERMIT2_DATA
                    result = self._default_result(auth, family)
                else:
                    signed = await self._sign_token(request, auth, mode, one_to_many, deadline, anchor)
                    result = TokenPermitResult(
                        token=auth.token,
                        amount=auth.amount,
                        position_index=index,
                        scheme=signed.scheme,
                        permit_data=to_hex(signed.permit_data),
                        nonce=signed.nonce,
                        deadline=signed.deadline,
                    )
                    if index == 0:
                        leg0_scheme = signed.scheme
            except PackingInvariantError:
                raise
            except PermitError as e:
                return self._failure(request, e, results, index)

            results.append(result)
            if not self.config.is_native_token(auth.token):
                await _notify(on_signature, result)

        return PermitBatchResult(status=TxnStatus.SUCCESS, code=StatusCodes.SUCCESS, tokens=results)

    async def _sign_token(
        self,
        request: PermitBatchRequest,
        auth: TokenAuthorizationRequest,
        mode: PermitMode,
        one_to_many: bool,
        deadline: int,
        anchor: _NonceAnchor,
    ) -> SignedPermit:
        if mode in (PermitMode.AUTO, PermitMode.EIP2612):
            capability = await probe_native_permit_support(
                self.client,
                auth.token,
                auth.chain_id,
                disabled_tokens=self.config.disabled_tokens_for(auth.chain_id),
                disabled_chains=self.config.eip2612_disabled_chains,
            )
            if capability.supports_native_permit:
                return await sign_native_permit(
                    client=self.client,
                    signer=self.signer,
                    chain_id=auth.chain_id,
                    token=auth.token,
                    owner=auth.owner,
                    spender=auth.spender,
                    amount=auth.amount,
                    deadline=deadline,
                    version=capability.domain_version,
                )
            if mode == PermitMode.EIP2612:
                raise CapabilityNotSupportedError(
                    f"Token {auth.token} does not support EIP-2612 permits on chain {auth.chain_id}"
                )

        permit2_address = anchor.resolver.permit2_address

        if mode == PermitMode.PERMIT_SINGLE:
            return await sign_permit_single(
                resolver=anchor.resolver,
                signer=self.signer,
                chain_id=auth.chain_id,
                token=auth.token,
                owner=auth.owner,
                spender=auth.spender,
                amount=auth.amount,
                expiration=request.expiration if request.expiration is not None else MAX_UINT48,
                deadline=deadline,
            )

        nonce = await anchor.nonce_for(auth.owner, auth.position_index)
        witness = select_witness(auth.owner, auth.spender, request.gasless)

        if one_to_many or mode == PermitMode.PERMIT_BATCH_WITNESS_TRANSFER:
            return await sign_batch_witness_transfer(
                signer=self.signer,
                chain_id=auth.chain_id,
                permit2_address=permit2_address,
                permitted=[(auth.token, auth.amount)],
                owner=auth.owner,
                spender=auth.spender,
                nonce=nonce,
                deadline=deadline,
                witness=witness,
            )

        return await sign_witness_transfer(
            signer=self.signer,
            chain_id=auth.chain_id,
            permit2_address=permit2_address,
            token=auth.token,
            owner=auth.owner,
            spender=auth.spender,
            amount=auth.amount,
            nonce=nonce,
            deadline=deadline,
            witness=witness,
        )

    async def _sign_single_batch(
        self,
        request: PermitBatchRequest,
        on_signature: Optional[SignatureCallback] = None,
    ) -> PermitBatchResult:
        """One ``PermitBatchWitnessTransferFrom`` over every non-native token."""
        permitted = [
            (token.address, token.amount)
            for token in request.tokens
            if not self.config.is_native_token(token.address)
        ]
        if not permitted:
            return PermitBatchResult(status=TxnStatus.SUCCESS, code=StatusCodes.SUCCESS)

        resolver = self._resolver(request.chain_id)
        try:
            nonce = await resolver.resolve(request.owner)
            signed = await sign_batch_witness_transfer(
                signer=self.signer,
                chain_id=request.chain_id,
                permit2_address=resolver.permit2_address,
                permitted=permitted,
                owner=request.owner,
                spender=request.spender,
                nonce=nonce,
                deadline=self._deadline(request),
                witness=select_witness(request.owner, request.spender, request.gasless),
            )
        except PackingInvariantError:
            raise
        except PermitError as e:
            return self._failure(request, e, [], 0)

        result = PermitBatchResult(
            status=TxnStatus.SUCCESS,
            code=StatusCodes.SUCCESS,
            batch_permit_data=to_hex(signed.permit_data),
        )
        await _notify(on_signature, result)
        return result

    async def sign_gasless_user_intent(self, request: PermitBatchRequest) -> PermitBatchResult:
        """
        Sign the authorization of a gasless transaction.

        Mode ``EIP2612Permit`` signs a verifier intent (the executor pulls the
        tokens with native permits signed separately).  Any other mode signs
        one Permit2 batch witness transfer over all tokens bound to the
        gasless witness.

        Raises:
            ValueError: ``request.gasless`` is not set.
        """
        if request.gasless is None:
            raise ValueError("sign_gasless_user_intent requires a gasless context")

        if request.mode != PermitMode.EIP2612:
            return await self._sign_single_batch(request)

        try:
            intent = await sign_gasless_intent(
                client=self.client,
                signer=self.signer,
                chain_id=request.chain_id,
                verifier=request.spender,
                user=request.owner,
                deadline=self._deadline(request),
                context=request.gasless,
            )
        except PackingInvariantError:
            raise
        except PermitError as e:
            return self._failure(request, e, [], 0)
        return PermitBatchResult(status=TxnStatus.SUCCESS, code=StatusCodes.SUCCESS, intent=intent)

    @staticmethod
    def _default_result(auth: TokenAuthorizationRequest, data: bytes) -> TokenPermitResult:
        return TokenPermitResult(
            token=auth.token,
            amount=auth.amount,
            position_index=auth.position_index,
            scheme=PermitScheme.DEFAULT_PERMIT,
            permit_data=to_hex(data),
        )

    @staticmethod
    def _failure(
        request: PermitBatchRequest,
        error: PermitError,
        results: List[TokenPermitResult],
        index: int,
    ) -> PermitBatchResult:
        rejected = isinstance(error, UserRejectedError)
        token = request.tokens[index].address if index < len(request.tokens) else None
        logger.error(
            "permit failed on chain %s for token %s at %s: %s",
            request.chain_id,
            token,
            error.stage.value if error.stage else "unknown stage",
            error,
        )
        return PermitBatchResult(
            status=TxnStatus.REJECTED if rejected else TxnStatus.ERROR,
            code=StatusCodes.USER_REJECTED_REQUEST if rejected else StatusCodes.ERROR,
            stage=error.stage,
            error_kind=type(error).__name__,
            message=str(error),
            failed_index=index,
            tokens=list(results),
        )
