"""
Read-only chain access for the permit engine.

The engine only ever performs view calls.  ``ReadOnlyChainClient`` is the
narrow protocol it depends on; ``Web3ChainClient`` implements it over
``web3.py`` and ``ChainClientPool`` hands out one client per RPC URL.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from web3 import AsyncWeb3

from ...engine.exceptions import ChainReadError
from .constants import PermitConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class ReadOnlyChainClient(Protocol):
    """Minimal async read surface used by probing and nonce resolution."""

    async def read_contract(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any:
        ...

    async def get_block_number(self) -> int:
        ...


class Web3ChainClient:
    """
    ``ReadOnlyChainClient`` backed by an ``AsyncWeb3`` instance.

    Every failure (revert, missing function, undecodable output, transport
    error) surfaces as ``ChainReadError`` carrying the address and function
    that were called.
    """

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    @classmethod
    def from_rpc_url(cls, rpc_url: str, request_timeout: int = 10) -> "Web3ChainClient":
        return cls(AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": request_timeout}
        )))

    async def read_contract(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any:
        try:
            contract = self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
            return await contract.get_function_by_name(function_name)(*args).call()
        except Exception as e:
            logger.debug("read %s on %s failed: %s", function_name, address, e)
            raise ChainReadError(
                f"{function_name}() call on {address} failed: {e}",
                address=address,
                function_name=function_name,
            ) from e

    async def get_block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise ChainReadError(f"eth_blockNumber failed: {e}") from e


class ChainClientPool:
    """
    Per-URL cache of ``Web3ChainClient`` instances.

    Constructed explicitly and passed by reference; the first request for a
    chain creates the client from the first configured RPC URL, later requests
    return the same instance.
    """

    def __init__(self, config: PermitConfig, request_timeout: int = 10):
        self.config = config
        self.request_timeout = request_timeout
        self._clients: Dict[str, Web3ChainClient] = {}

    def get(self, chain_id: int, rpc_url: Optional[str] = None) -> Web3ChainClient:
        """
        Return the client for ``chain_id`` (or for ``rpc_url`` when given).

        Raises:
            ConfigurationError: No RPC URL is configured for the chain.
        """
        url = rpc_url or self.config.get_rpc_urls(chain_id)[0]
        client = self._clients.get(url)
        if client is None:
            logger.info("creating chain client for chain %s", chain_id)
            client = Web3ChainClient.from_rpc_url(url, self.request_timeout)
            self._clients[url] = client
        return client

    def __len__(self) -> int:
        return len(self._clients)
