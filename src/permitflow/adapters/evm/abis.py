"""
Permit Contract ABI Module

Minimal view-function ABI fragments read by the permit engine: the EIP-2612
surface of ERC-20 tokens, the Permit2 nonce bitmap and allowance, the nonce
proxy helper and the gasless verifier nonce.

Usage:
    from permitflow.adapters.evm.abis import (
        get_erc20_permit_abi,
        get_permit2_abi,
    )

    value = await client.read_contract(token, get_erc20_permit_abi(), "nonces", (owner,))
"""

from typing import Dict, Any, List


def _view(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": inputs,
        "outputs": outputs,
    }


def get_erc20_permit_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the EIP-2612 view functions of an ERC-20 token.

    Returns:
        List[Dict[str, Any]]: ABI for ``DOMAIN_SEPARATOR``, ``nonces``,
        ``version`` and ``name``.

    Example:
        abi = get_erc20_permit_abi()
        separator = await client.read_contract(token, abi, "DOMAIN_SEPARATOR")
    """
    return [
        _view("DOMAIN_SEPARATOR", [], [{"name": "", "type": "bytes32"}]),
        _view("nonces", [{"name": "owner", "type": "address"}], [{"name": "", "type": "uint256"}]),
        _view("version", [], [{"name": "", "type": "string"}]),
        _view("name", [], [{"name": "", "type": "string"}]),
    ]


def get_permit2_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the Permit2 nonce views.

    ``nonceBitmap(owner, wordPos)`` backs unordered (signature transfer)
    nonces; ``allowance(owner, token, spender)`` returns
    ``(amount, expiration, nonce)`` for ordered (allowance transfer) nonces.

    Returns:
        List[Dict[str, Any]]: ABI for ``nonceBitmap`` and ``allowance``.
    """
    return [
        _view(
            "nonceBitmap",
            [{"name": "", "type": "address"}, {"name": "", "type": "uint256"}],
            [{"name": "", "type": "uint256"}],
        ),
        _view(
            "allowance",
            [
                {"name": "", "type": "address"},
                {"name": "", "type": "address"},
                {"name": "", "type": "address"},
            ],
            [
                {"name": "amount", "type": "uint160"},
                {"name": "expiration", "type": "uint48"},
                {"name": "nonce", "type": "uint48"},
            ],
        ),
    ]


def get_nonce_proxy_abi() -> List[Dict[str, Any]]:
    """Get ABI for the nonce helper contract ``nextNonce(owner)``."""
    return [
        _view("nextNonce", [{"name": "owner", "type": "address"}], [{"name": "", "type": "uint256"}]),
    ]


def get_verifier_abi() -> List[Dict[str, Any]]:
    """Get ABI for the gasless verifier ``getNonce(user)``."""
    return [
        _view("getNonce", [{"name": "user", "type": "address"}], [{"name": "", "type": "uint256"}]),
    ]
