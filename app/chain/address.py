from __future__ import annotations

import re

from web3 import Web3

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class AddressValidator:
    """EIP-55 address check. Pure, no I/O."""

    def validate(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        if not _HEX_ADDRESS_RE.match(address):
            return False
        # mixed or single case: casing must equal the EIP-55 checksum encoding
        return Web3.is_checksum_address(address)


def is_valid_address(address: object) -> bool:
    return AddressValidator().validate(address)
