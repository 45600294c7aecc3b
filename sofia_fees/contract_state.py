"""Fee configuration and balance of the proxy contract, read via eth_call."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from . import config
from .format import format_trust
from .rpc import MalformedResponseError

logger = logging.getLogger(__name__)

# getter name -> return type
FEE_GETTERS = {
    "depositFixedFee": "uint256",
    "depositPercentageFee": "uint256",
    "FEE_DENOMINATOR": "uint256",
    "MAX_FEE_PERCENTAGE": "uint256",
    "feeRecipient": "address",
    "ethMultiVault": "address",
}


def selector(fn_name: str) -> str:
    return Web3.to_hex(Web3.keccak(text=f"{fn_name}()")[:4])


@dataclass(frozen=True)
class ContractState:
    deposit_fixed_fee: int
    deposit_percentage_fee: int
    fee_denominator: int
    max_fee_percentage: int
    fee_recipient: str
    eth_multi_vault: str
    contract_balance: int

    @property
    def deposit_fixed_fee_formatted(self) -> str:
        return format_trust(self.deposit_fixed_fee)

    @property
    def deposit_percentage_formatted(self) -> str:
        if self.fee_denominator <= 0:
            return "0"
        return f"{self.deposit_percentage_fee / self.fee_denominator * 100:.2f}"

    @property
    def contract_balance_formatted(self) -> str:
        return format_trust(self.contract_balance)


class ContractStateReader:
    def __init__(self, client, contract_address: str | None = None):
        self.client = client
        self.contract_address = Web3.to_checksum_address(contract_address or config.SOFIA_PROXY_ADDRESS)

    def _read(self, fn_name: str):
        abi_type = FEE_GETTERS[fn_name]
        raw = self.client.eth_call(self.contract_address, selector(fn_name))
        try:
            data = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
            (value,) = abi_decode([abi_type], data)
        except (DecodingError, ValueError) as e:
            raise MalformedResponseError(f"{fn_name}(): undecodable return data {raw!r}") from e
        return Web3.to_checksum_address(value) if abi_type == "address" else int(value)

    def read(self) -> ContractState:
        values = {name: self._read(name) for name in FEE_GETTERS}
        balance = self.client.get_balance(self.contract_address)
        logger.debug(f"Contract state for {self.contract_address}: {values}, balance {balance}")
        return ContractState(
            deposit_fixed_fee=values["depositFixedFee"],
            deposit_percentage_fee=values["depositPercentageFee"],
            fee_denominator=values["FEE_DENOMINATOR"],
            max_fee_percentage=values["MAX_FEE_PERCENTAGE"],
            fee_recipient=values["feeRecipient"],
            eth_multi_vault=values["ethMultiVault"],
            contract_balance=balance,
        )
