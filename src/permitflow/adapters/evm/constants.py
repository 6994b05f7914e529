"""
EVM Permit Configuration and Constants

Address tables, integer bounds and the configuration model of the permit
engine.  Configuration is a pydantic model that can be built in code or from
environment variables (``.env`` files are picked up through ``python-dotenv``).

Environment variables:
    PERMITFLOW_RPC_URL_<chainId>        Comma separated RPC URLs for a chain.
    PERMITFLOW_SIGNATURE_EXPIRY_SECS    Signature lifetime in seconds (default 1800).
    PERMITFLOW_NONCE_SCAN_MAX_WORDS     Bitmap scan ceiling in words (default 1000).
    PERMITFLOW_EIP2612_DISABLED_CHAINS  Comma separated chain IDs without native permits.
"""

import os
import time
from typing import Dict, List, Optional

import dotenv
from pydantic import BaseModel, Field
from web3 import Web3

from ...engine.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Integer bounds
# ---------------------------------------------------------------------------

MAX_UINT48: int = 2**48 - 1
MAX_UINT160: int = 2**160 - 1
MAX_UINT256: int = 2**256 - 1

#: Default lifetime of every signature deadline.
SIGNATURE_EXPIRY_SECS: int = 1800

#: Domain version used when a token does not expose ``version()``.
DEFAULT_PERMIT_VERSION: str = "1"

#: Bits per nonce bitmap word position (``nonce = word << 8 | pos``).
NONCE_POSITION_BITS: int = 8
NONCE_WORD_SIZE: int = 256
NONCE_SCAN_MAX_WORDS: int = 1000


# ---------------------------------------------------------------------------
# Address tables
# ---------------------------------------------------------------------------

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN_ADDRESS: str = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

DEFAULT_PERMIT2_ADDRESS: str = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

# Chains where Permit2 lives at a non-canonical address.
EXCLUSIVE_PERMIT2_ADDRESSES: Dict[int, str] = {
    324: "0x0000000000225e31D15943971F47aD3022F714Fa",     # zkSync
    2741: "0x0000000000225e31D15943971F47aD3022F714Fa",    # Abstract
    232: "0x0000000000225e31D15943971F47aD3022F714Fa",     # Lens
    10242: "0x5Aeec43fF96b9B6c5a1dC1DAdA662ACE3c236C49",   # Arthera
    6001: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",    # BounceBit
    5115: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",    # Citrea testnet
    996: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",     # Bifrost
    14: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",      # Flare
    8822: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",    # IOTA EVM
    42766: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",   # ZKFair
    5165: "0x08208a5f56696E7AA3eAF7a307fa63B37bd8e8A5",    # Bahamut
}

# Chains where the next unordered nonce is served by a helper contract
# exposing ``nextNonce(owner)`` instead of a client-side bitmap scan.
PERMIT2_NONCE_PROXY_ADDRESSES: Dict[int, str] = {
    42161: "0x89c6340B1a1f4b25D36cd8B063D49045caF3f818",   # Arbitrum
    8453: "0x89c6340B1a1f4b25D36cd8B063D49045caF3f818",    # Base
    33139: "0x89c6340B1a1f4b25D36cd8B063D49045caF3f818",   # ApeChain
    42220: "0x89c6340B1a1f4b25D36cd8B063D49045caF3f818",   # Celo
    747474: "0x628d684D57c73A5D8cA77F455Fdf2CC8Bd503c16",  # Katana
}

EIP2612_DISABLED_CHAINS: List[int] = [747474]


class PermitConfig(BaseModel):
    """
    Runtime configuration of the permit engine.

    Every table falls back to the built-in defaults above; overrides given
    here win per chain.
    """

    permit2_addresses: Dict[int, str] = Field(
        default_factory=dict, description="Per-chain Permit2 address overrides"
    )
    permit2_proxy_addresses: Dict[int, str] = Field(
        default_factory=lambda: dict(PERMIT2_NONCE_PROXY_ADDRESSES),
        description="Per-chain nonce proxy contracts",
    )
    eip2612_disabled_tokens: Dict[int, List[str]] = Field(
        default_factory=dict, description="Tokens whose EIP-2612 support is never trusted"
    )
    eip2612_disabled_chains: List[int] = Field(
        default_factory=lambda: list(EIP2612_DISABLED_CHAINS),
        description="Chains on which native permits are never used",
    )
    rpc_urls: Dict[int, List[str]] = Field(default_factory=dict, description="Per-chain RPC URLs")
    signature_expiry_secs: int = Field(default=SIGNATURE_EXPIRY_SECS, gt=0)
    nonce_scan_max_words: int = Field(default=NONCE_SCAN_MAX_WORDS, gt=0)
    native_token_addresses: List[str] = Field(
        default_factory=lambda: [NATIVE_TOKEN_ADDRESS, ZERO_ADDRESS],
        description="Sentinel addresses standing for the chain's native currency",
    )

    def get_permit2_address(self, chain_id: int) -> str:
        return self.permit2_addresses.get(chain_id) or get_permit2_address(chain_id)

    def get_proxy_address(self, chain_id: int) -> Optional[str]:
        return self.permit2_proxy_addresses.get(chain_id)

    def disabled_tokens_for(self, chain_id: int) -> List[str]:
        return list(self.eip2612_disabled_tokens.get(chain_id, []))

    def is_native_token(self, address: str) -> bool:
        lowered = address.lower()
        return any(lowered == native.lower() for native in self.native_token_addresses)

    def get_rpc_urls(self, chain_id: int) -> List[str]:
        """
        Return the RPC URLs configured for ``chain_id``.

        Raises:
            ConfigurationError: No URL configured for the chain.
        """
        urls = self.rpc_urls.get(chain_id)
        if not urls:
            raise ConfigurationError(f"No RPC URL configured for chain {chain_id}")
        return list(urls)


def get_permit2_address(chain_id: int) -> str:
    """Return the checksummed Permit2 address deployed on ``chain_id``."""
    return Web3.to_checksum_address(EXCLUSIVE_PERMIT2_ADDRESSES.get(chain_id, DEFAULT_PERMIT2_ADDRESS))


def generate_deadline(expiry_secs: int = SIGNATURE_EXPIRY_SECS) -> int:
    """Unix timestamp ``expiry_secs`` seconds from now."""
    return int(time.time()) + expiry_secs


def _parse_int_list(raw: str, name: str) -> List[int]:
    try:
        return [int(item) for item in raw.split(",") if item.strip()]
    except ValueError as e:
        raise ConfigurationError(f"Invalid integer list in {name}: {raw!r}") from e


def _parse_positive_int(raw: str, name: str) -> int:
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid integer in {name}: {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_config_from_env(env: Optional[Dict[str, str]] = None) -> PermitConfig:
    """
    Build a ``PermitConfig`` from environment variables.

    Args:
        env: Mapping to read instead of ``os.environ``.  When omitted, a local
             ``.env`` file is loaded first.

    Returns:
        PermitConfig with the overrides found in the environment.

    Raises:
        ConfigurationError: A variable is present but malformed.
    """
    if env is None:
        dotenv.load_dotenv()
        env = dict(os.environ)

    prefix = "PERMITFLOW_RPC_URL_"
    rpc_urls: Dict[int, List[str]] = {}
    for key, value in env.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):]
        if not suffix.isdigit():
            raise ConfigurationError(f"Invalid chain id in {key}")
        urls = [url.strip() for url in value.split(",") if url.strip()]
        if urls:
            rpc_urls[int(suffix)] = urls

    kwargs = {"rpc_urls": rpc_urls}
    if env.get("PERMITFLOW_SIGNATURE_EXPIRY_SECS"):
        kwargs["signature_expiry_secs"] = _parse_positive_int(
            env["PERMITFLOW_SIGNATURE_EXPIRY_SECS"], "PERMITFLOW_SIGNATURE_EXPIRY_SECS"
        )
    if env.get("PERMITFLOW_NONCE_SCAN_MAX_WORDS"):
        kwargs["nonce_scan_max_words"] = _parse_positive_int(
            env["PERMITFLOW_NONCE_SCAN_MAX_WORDS"], "PERMITFLOW_NONCE_SCAN_MAX_WORDS"
        )
    if env.get("PERMITFLOW_EIP2612_DISABLED_CHAINS"):
        kwargs["eip2612_disabled_chains"] = _parse_int_list(
            env["PERMITFLOW_EIP2612_DISABLED_CHAINS"], "PERMITFLOW_EIP2612_DISABLED_CHAINS"
        )

    return PermitConfig(**kwargs)
