"""
EIP-2612 capability probing.

A token is treated as supporting native permits when both
``DOMAIN_SEPARATOR()`` and ``nonces(address)`` answer.  ``version()`` is read
alongside and reported when available.  Probing is structural only: it never
checks that the permit would actually verify on-chain.
"""

import asyncio
import logging
from typing import Iterable, Optional, Tuple

from ...engine.exceptions import CapabilityNotSupportedError, ChainReadError
from .abis import get_erc20_permit_abi
from .chain import ReadOnlyChainClient
from .constants import ZERO_ADDRESS
from .schemas import CapabilityResult

logger = logging.getLogger(__name__)


def _is_disabled(token: str, disabled_tokens: Optional[Iterable[str]]) -> bool:
    if not disabled_tokens:
        return False
    lowered = token.lower()
    return any(lowered == item.lower() for item in disabled_tokens)


def _rejected(result) -> bool:
    if isinstance(result, ChainReadError):
        return True
    if isinstance(result, BaseException):
        raise result
    return False


async def probe_native_permit_support(
    client: ReadOnlyChainClient,
    token: str,
    chain_id: int,
    disabled_tokens: Optional[Iterable[str]] = None,
    disabled_chains: Optional[Iterable[int]] = None,
) -> CapabilityResult:
    """
    Decide whether ``token`` exposes the EIP-2612 interface.

    Args:
        client: Read-only chain client for ``chain_id``.
        token: Token contract address.
        chain_id: EVM network ID.
        disabled_tokens: Tokens never trusted for native permits on this chain.
        disabled_chains: Chains on which native permits are never used.

    Returns:
        CapabilityResult. ``domain_version`` is ``None`` when ``version()``
        is unavailable.
    """
    if _is_disabled(token, disabled_tokens) or (disabled_chains and chain_id in disabled_chains):
        logger.debug("native permit disabled for %s on chain %s", token, chain_id)
        return CapabilityResult(supports_native_permit=False)

    abi = get_erc20_permit_abi()
    separator, nonce, version = await asyncio.gather(
        client.read_contract(token, abi, "DOMAIN_SEPARATOR"),
        client.read_contract(token, abi, "nonces", (ZERO_ADDRESS,)),
        client.read_contract(token, abi, "version"),
        return_exceptions=True,
    )

    if _rejected(separator) or _rejected(nonce):
        logger.debug("token %s on chain %s has no EIP-2612 surface", token, chain_id)
        return CapabilityResult(supports_native_permit=False)

    domain_version = None if _rejected(version) else str(version)
    return CapabilityResult(supports_native_permit=True, domain_version=domain_version)


async def fetch_native_permit_metadata(
    client: ReadOnlyChainClient,
    token: str,
    owner: str,
) -> Tuple[str, int]:
    """
    Read the token ``name()`` and the owner's current ``nonces(owner)``.

    Returns:
        Tuple[str, int]: ``(name, nonce)`` for the EIP-2612 domain and message.

    Raises:
        CapabilityNotSupportedError: Either read failed.
    """
    abi = get_erc20_permit_abi()
    try:
        name, nonce = await asyncio.gather(
            client.read_contract(token, abi, "name"),
            client.read_contract(token, abi, "nonces", (owner,)),
        )
    except ChainReadError as e:
        raise CapabilityNotSupportedError(f"Cannot read permit metadata of {token}: {e}") from e
    return str(name), int(nonce)
