import pytest

from app.chain.address import AddressValidator, is_valid_address


@pytest.mark.parametrize(
    "address",
    [
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359",
        "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB",
        "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
    ],
)
def test_checksummed_addresses_are_valid(address):
    assert AddressValidator().validate(address) is True


@pytest.mark.parametrize(
    "address",
    [
        "",
        "0x",
        "5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # missing prefix
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAe",  # 39 hex chars
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAedd",  # 41 hex chars
        "0xZZAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # not hex
        "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed",  # checksum broken
    ],
)
def test_malformed_or_miscased_addresses_are_rejected(address):
    assert AddressValidator().validate(address) is False


def test_non_string_input_is_rejected():
    assert is_valid_address(None) is False
    assert is_valid_address(12345) is False
    assert is_valid_address(b"0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed") is False


def test_validation_is_deterministic():
    v = AddressValidator()
    address = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
    assert all(v.validate(address) for _ in range(5))
