"""
Demand contract adapter.

The token buyer contract holds native currency and periodically needs to buy
a stablecoin with it. It exposes how much stablecoin it needs and how much it
will pay, and a ``buyETH`` entry point that pays out native currency to a
beneficiary executor which supplies the stablecoin.
"""

import logging

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from web3 import AsyncWeb3

from .types import Opportunity

logger = logging.getLogger(__name__)

BUY_ETH_SIGNATURE = "buyETH(uint256,address,bytes)"

TOKEN_BUYER_ABI = [
    {
        "inputs": [],
        "name": "tokenAmountNeededAndETHPayout",
        "outputs": [
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "tokenAmount", "type": "uint256"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "bytes", "name": "data", "type": "bytes"},
        ],
        "name": "buyETH",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def encode_auxiliary_data(
    executor_target: str,
    execution_calldata: bytes,
    execution_cost_estimate: int,
    bribe_amount: int = 0,
) -> bytes:
    """
    Payload handed to the beneficiary executor.

    ABI encoding of (address target, bytes calldata, uint256 cost, uint256 bribe).
    The bribe is not used yet and is always zero in practice.
    """
    return encode(
        ["address", "bytes", "uint256", "uint256"],
        [
            to_checksum_address(executor_target),
            execution_calldata,
            execution_cost_estimate,
            bribe_amount,
        ],
    )


def encode_buy_eth(token_amount: int, beneficiary: str, data: bytes) -> bytes:
    """Calldata for ``buyETH(uint256,address,bytes)``."""
    selector = function_signature_to_4byte_selector(BUY_ETH_SIGNATURE)
    return selector + encode(
        ["uint256", "address", "bytes"], [token_amount, to_checksum_address(beneficiary), data]
    )


class TokenBuyerContract:
    """Async wrapper over the demand contract."""

    def __init__(self, w3: AsyncWeb3, address: str):
        self.w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=TOKEN_BUYER_ABI)

    async def fetch_opportunity(self) -> Opportunity:
        """
        Read ``(amountNeeded, amountOffered)``.

        Reverts when the contract's price feed is stale; the caller treats
        that as a skipped cycle.
        """
        needed, offered = await self.contract.functions.tokenAmountNeededAndETHPayout().call()
        logger.debug(f"tokenAmountNeededAndETHPayout -> ({needed}, {offered})")
        return Opportunity(amount_needed=int(needed), amount_offered=int(offered))

    def encode_buy_eth(self, token_amount: int, beneficiary: str, data: bytes) -> bytes:
        return encode_buy_eth(token_amount, beneficiary, data)

    async def estimate_buy_eth_gas(
        self, token_amount: int, beneficiary: str, data: bytes, sender: str
    ) -> int:
        """Gas estimate for the exact call that would be submitted."""
        gas = await self.w3.eth.estimate_gas(
            {
                "from": sender,
                "to": self.address,
                "data": self.encode_buy_eth(token_amount, beneficiary, data),
            }
        )
        return int(gas)
