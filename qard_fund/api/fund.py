"""
Fund report endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import FundSystem, get_fund_system
from .schemas import deposits_overview_to_list
from ..currency import format_currency


router = APIRouter()


@router.get("/summary")
def get_fund_summary(system: FundSystem = Depends(get_fund_system)):
    """Dashboard totals, with display strings for the headline figures"""
    summary = system.reporting.fund_summary()
    result = summary.to_dict()
    settings = system.config
    result["display"] = {
        key: format_currency(result[key], label=settings.currency_label,
                             persian=settings.persian_digits)
        for key in ("total_deposits", "total_loan_balance", "fund_online", "cash_balance")
    }
    return result


@router.get("/deposits")
def get_deposits_overview(system: FundSystem = Depends(get_fund_system)):
    """Contribution count and total per member"""
    return deposits_overview_to_list(system.reporting.deposits_overview())
