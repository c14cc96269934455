"""
ERC20 transfer sink backed by an EVM chain.

Escrows whose token id is registered with a Web3TokenSink pay out by
sending an ERC20 transfer() from the sink's custody wallet. The ticket
is the transaction hash; the outcome is read from the receipt on a
later poll.
"""

import logging
from typing import Optional, Dict
from dataclasses import dataclass, field

from web3 import Web3
from web3.exceptions import TransactionNotFound
from eth_account import Account

from .tokens import TransferSink

log = logging.getLogger(__name__)

# USDC on Base Sepolia (Circle's official testnet USDC)
USDC_CONTRACT_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

# Base Sepolia RPC
RPC_URL = "https://sepolia.base.org"
CHAIN_ID = 84532

# ERC20 ABI (minimal - only functions we use)
ERC20_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "bool"}]
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}]
    }
]


@dataclass
class EVMSinkConfig:
    """EVM transfer sink configuration."""
    rpc_url: str = RPC_URL
    chain_id: int = CHAIN_ID
    token_address: str = USDC_CONTRACT_ADDRESS
    private_key: str = ""           # custody wallet paying out escrowed tokens
    gas: int = 100000
    # Ledger account id -> EVM address
    address_map: Dict[str, str] = field(default_factory=dict)


class Web3TokenSink(TransferSink):
    """
    Transfer sink sending ERC20 tokens with web3.py.

    The escrow's ledger account is the logical sender; tokens leave the
    custody wallet configured by private_key.
    """

    def __init__(self, config: EVMSinkConfig, web3: Optional[Web3] = None):
        if not config.private_key:
            raise ValueError("EVMSinkConfig.private_key is required")
        self.config = config
        self._web3 = web3
        self.account = Account.from_key(config.private_key)

    @property
    def web3(self) -> Web3:
        """Lazy web3 connection."""
        if self._web3 is None:
            self._web3 = Web3(Web3.HTTPProvider(self.config.rpc_url))
        return self._web3

    def resolve_address(self, account: str) -> str:
        """Map a ledger account id to a checksummed EVM address."""
        address = self.config.address_map.get(account, account)
        if not Web3.is_address(address):
            raise ValueError(f"No EVM address for account {account!r}")
        return Web3.to_checksum_address(address)

    def _token(self):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(self.config.token_address),
            abi=ERC20_ABI,
        )

    def balance_of(self, account: str) -> int:
        return self._token().functions.balanceOf(self.resolve_address(account)).call()

    def send(self, sender: str, recipient: str, amount: int) -> str:
        to = self.resolve_address(recipient)
        w3 = self.web3

        nonce = w3.eth.get_transaction_count(self.account.address, "pending")
        tx = self._token().functions.transfer(to, amount).build_transaction({
            'chainId': self.config.chain_id,
            'gas': self.config.gas,
            'gasPrice': w3.eth.gas_price,
            'nonce': nonce,
            'from': self.account.address,
        })

        signed = w3.eth.account.sign_transaction(tx, self.config.private_key)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        ticket = tx_hash.hex()

        log.info(f"ERC20 transfer for {sender}: {amount} -> {to}, tx={ticket}")
        return ticket

    def poll(self, ticket: str) -> Optional[bool]:
        try:
            receipt = self.web3.eth.get_transaction_receipt(ticket)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None

        ok = receipt["status"] == 1
        if not ok:
            log.warning(f"ERC20 transfer reverted: tx={ticket}")
        return ok
