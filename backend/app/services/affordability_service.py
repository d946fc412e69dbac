"""Buyer affordability scoring for a single resale flat.

Uses the HDB concessionary loan rules as fixed policy: the monthly
instalment may not exceed the mortgage servicing ratio (MSR) share of
income, the loan is capped by loan-to-value, and the tenure is limited by
the 25-year maximum, the borrower reaching 65, and the lease left after
the loan ends. A remaining lease that covers the youngest buyer to age 95
allows full CPF usage.
"""
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from app import config

NEUTRAL_LEASE_YEARS = 50.0
LEASE_YEARS = 99

LOAN_FIT_WEIGHT = 0.5
CASH_FIT_WEIGHT = 0.3
LEASE_FIT_WEIGHT = 0.2


@dataclass(frozen=True)
class AffordabilityInputs:
    price: float
    age: float
    remaining_lease_years: float
    income_per_annum: float
    down_payment_budget: Optional[float] = None


@dataclass(frozen=True)
class AffordabilityEvaluation:
    score: float                       # 0..10
    max_loan: float
    monthly_instalment: float
    required_down_payment: float
    tenure_years: int
    lease_covers_to_95: bool


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def annuity_payment(principal: float, monthly_rate: float, months: int) -> float:
    """Monthly payment for ``principal`` at ``monthly_rate`` over ``months``."""
    if months <= 0:
        return 0.0
    if monthly_rate == 0:
        return principal / months
    f = (1 + monthly_rate) ** months
    return principal * monthly_rate * f / (f - 1)


def principal_from_payment(monthly_payment: float, monthly_rate: float, months: int) -> float:
    """Largest principal serviceable by ``monthly_payment``."""
    if months <= 0 or monthly_payment <= 0:
        return 0.0
    if monthly_rate == 0:
        return monthly_payment * months
    f = (1 + monthly_rate) ** months
    return monthly_payment * (f - 1) / (monthly_rate * f)


def loan_tenure_years(age: float, remaining_lease_years: float) -> int:
    tenure = min(
        config.MAX_LOAN_TENURE_YEARS,
        config.LOAN_END_AGE - age,
        remaining_lease_years - config.MIN_LEASE_AFTER_LOAN_YEARS,
    )
    return max(0, int(math.floor(tenure)))


def evaluate_affordability(inputs: AffordabilityInputs) -> AffordabilityEvaluation:
    """Score how comfortably the buyer can finance ``inputs.price`` (0-10)."""
    price = max(0.0, float(inputs.price))
    tenure = loan_tenure_years(inputs.age, inputs.remaining_lease_years)
    months = tenure * 12
    monthly_rate = config.HDB_INTEREST_PA / 100.0 / 12.0

    instalment_cap = config.MSR_CAP * max(0.0, inputs.income_per_annum) / 12.0
    ltv_cap = config.HDB_LTV * price
    max_loan = min(principal_from_payment(instalment_cap, monthly_rate, months), ltv_cap)
    required_down = max(0.0, price - max_loan)

    loan_fit = _clamp01(max_loan / ltv_cap) if ltv_cap > 0 else 1.0

    years_to_95 = config.CPF_COVER_AGE - inputs.age
    covers_to_95 = inputs.remaining_lease_years >= years_to_95
    if covers_to_95 or years_to_95 <= 0:
        lease_fit = 1.0
    else:
        lease_fit = _clamp01(inputs.remaining_lease_years / years_to_95)

    parts = [(loan_fit, LOAN_FIT_WEIGHT), (lease_fit, LEASE_FIT_WEIGHT)]
    budget = inputs.down_payment_budget
    if budget is not None and math.isfinite(budget):
        cash_fit = 1.0 if required_down <= 0 else _clamp01(max(0.0, budget) / required_down)
        parts.append((cash_fit, CASH_FIT_WEIGHT))

    total_weight = sum(w for _, w in parts)
    score = 10 * sum(v * w for v, w in parts) / total_weight

    return AffordabilityEvaluation(
        score=round(score, 1),
        max_loan=round(max_loan, 2),
        monthly_instalment=round(annuity_payment(max_loan, monthly_rate, months), 2),
        required_down_payment=round(required_down, 2),
        tenure_years=tenure,
        lease_covers_to_95=covers_to_95,
    )


def estimate_remaining_lease_years(
    remaining_lease_years: Optional[float],
    lease_commence_year: Optional[int],
    month: Optional[str],
) -> float:
    """Remaining lease at the transaction date.

    Prefers the parsed remaining-lease value; otherwise derives it from a
    99-year lease and the commencement year. Unknown inputs give a neutral 50.
    """
    if remaining_lease_years is not None and math.isfinite(remaining_lease_years):
        return max(0.0, min(float(LEASE_YEARS), float(remaining_lease_years)))
    if lease_commence_year is None:
        return NEUTRAL_LEASE_YEARS

    txn_year = date.today().year
    if month and len(month) >= 4 and month[:4].isdigit():
        txn_year = int(month[:4])
    elapsed = max(0, txn_year - int(lease_commence_year))
    return float(min(LEASE_YEARS, max(0, LEASE_YEARS - elapsed)))
