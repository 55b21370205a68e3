# routes/wallet.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.chain.address import is_valid_address
from app.chain.base import format_ether
from app.container import Services
from app.errors import InvalidAddress
from deps.services import admission, get_services
from schemas import WalletBalanceResponse

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get(
    "/balance/{address}",
    response_model=WalletBalanceResponse,
    dependencies=[Depends(admission("general"))],
)
def wallet_balance(address: str, services: Services = Depends(get_services)):
    if not is_valid_address(address):
        raise InvalidAddress("Invalid address")
    balance_wei = services.chain.get_balance(address)
    return WalletBalanceResponse(
        address=address,
        balance=format_ether(balance_wei),
        balance_wei=str(balance_wei),
    )
