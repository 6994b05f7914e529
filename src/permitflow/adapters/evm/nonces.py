"""
Permit2 Nonce Resolution

Permit2 signature transfers use unordered nonces stored as a bitmap: nonce
``n`` lives in word ``n >> 8`` at bit ``n & 0xff``.  Depending on the chain,
the next free nonce is either found by scanning that bitmap from the client
(``BitmapNonceScanner``) or read from a helper contract
(``ProxyNonceReader``).  ``NonceResolver`` picks the right one and adds the
pure ``derive`` step used for sequential multi-token batches.

Exported helpers:
    - nonce_from_word_and_pos: Compose ``(word << 8) | pos``.
    - BitmapNonceScanner: Client-side bitmap scan.
    - ProxyNonceReader: ``nextNonce(owner)`` on the helper contract.
    - NonceResolver: Strategy selection, error mapping and derivation.
"""

import logging
from typing import Optional

from ...engine.exceptions import ChainReadError, NonceResolutionError
from .abis import get_nonce_proxy_abi, get_permit2_abi
from .chain import ReadOnlyChainClient
from .constants import MAX_UINT256, NONCE_POSITION_BITS, NONCE_SCAN_MAX_WORDS, NONCE_WORD_SIZE

logger = logging.getLogger(__name__)

_POSITION_MASK = 0xFF


def nonce_from_word_and_pos(word: int, pos: int) -> int:
    return (word << NONCE_POSITION_BITS) | pos


class BitmapNonceScanner:
    """
    Finds the lowest unused Permit2 nonce by scanning ``nonceBitmap`` words.

    Mirrors the on-chain layout exactly: a fully used word (all 256 bits set)
    moves the scan to the next word; otherwise the first zero bit from the
    cursor upwards is the free slot.
    """

    def __init__(
        self,
        client: ReadOnlyChainClient,
        permit2_address: str,
        max_word_iterations: int = NONCE_SCAN_MAX_WORDS,
    ):
        self.client = client
        self.permit2_address = permit2_address
        self.max_word_iterations = max_word_iterations

    async def get_nonce_bitmap(self, owner: str, word: int) -> int:
        return int(await self.client.read_contract(
            self.permit2_address, get_permit2_abi(), "nonceBitmap", (owner, word)
        ))

    async def next_nonce(self, owner: str) -> int:
        """
        Return the next free nonce of ``owner``.

        Raises:
            NonceResolutionError: ``max_word_iterations`` words were all fully
                used.
            ChainReadError: A bitmap read failed.
        """
        word = 0
        for _ in range(self.max_word_iterations):
            bitmap = await self.get_nonce_bitmap(owner, word)

            if bitmap == MAX_UINT256:
                word += 1
                continue

            pos = 0
            working = bitmap
            while pos < NONCE_WORD_SIZE and working & 1 == 1:
                working >>= 1
                pos += 1

            return nonce_from_word_and_pos(word, pos)

        raise NonceResolutionError(
            f"No free Permit2 nonce for {owner} within {self.max_word_iterations} bitmap words"
        )

    async def is_nonce_used(self, owner: str, nonce: int) -> bool:
        word = nonce >> NONCE_POSITION_BITS
        pos = nonce & _POSITION_MASK
        bitmap = await self.get_nonce_bitmap(owner, word)
        return (bitmap >> pos) & 1 == 1


class ProxyNonceReader:
    """Reads the next nonce from a helper contract exposing ``nextNonce(owner)``."""

    def __init__(self, client: ReadOnlyChainClient, proxy_address: str):
        self.client = client
        self.proxy_address = proxy_address

    async def next_nonce(self, owner: str) -> int:
        return int(await self.client.read_contract(
            self.proxy_address, get_nonce_proxy_abi(), "nextNonce", (owner,)
        ))


class NonceResolver:
    """
    Resolves Permit2 nonces for one chain.

    Uses the proxy reader when ``proxy_address`` is set and the bitmap scanner
    otherwise.  Every read is fresh; nothing is cached between calls.

    Args:
        client: Read-only chain client.
        permit2_address: Permit2 contract of the chain.
        proxy_address: Nonce helper contract, if the chain has one.
        max_word_iterations: Bitmap scan ceiling.
    """

    def __init__(
        self,
        client: ReadOnlyChainClient,
        permit2_address: str,
        proxy_address: Optional[str] = None,
        max_word_iterations: int = NONCE_SCAN_MAX_WORDS,
    ):
        self.client = client
        self.permit2_address = permit2_address
        if proxy_address:
            self.strategy = ProxyNonceReader(client, proxy_address)
        else:
            self.strategy = BitmapNonceScanner(client, permit2_address, max_word_iterations)

    async def resolve(self, owner: str) -> int:
        """
        Return the next free unordered nonce of ``owner``.

        Raises:
            NonceResolutionError: The read failed or the scan ceiling was hit.
        """
        try:
            nonce = await self.strategy.next_nonce(owner)
        except ChainReadError as e:
            raise NonceResolutionError(f"Unable to read Permit2 nonce for {owner}: {e}") from e
        logger.debug("resolved Permit2 nonce %s for %s via %s", nonce, owner, type(self.strategy).__name__)
        return nonce

    @staticmethod
    def derive(first_nonce: int, offset: int) -> int:
        """Nonce of the token ``offset`` positions after the anchor.  No I/O."""
        if offset < 0:
            raise NonceResolutionError(f"Negative nonce offset {offset}")
        return first_nonce + offset

    async def allowance_nonce(self, owner: str, token: str, spender: str) -> int:
        """
        Return the ordered nonce of Permit2 ``allowance(owner, token, spender)``.

        Raises:
            NonceResolutionError: The allowance read failed.
        """
        try:
            _amount, _expiration, nonce = await self.client.read_contract(
                self.permit2_address, get_permit2_abi(), "allowance", (owner, token, spender)
            )
        except ChainReadError as e:
            raise NonceResolutionError(f"Unable to read Permit2 allowance nonce for {owner}: {e}") from e
        return int(nonce)
