# This project was developed with assistance from AI tools.
"""Eligibility and amortization math.

Pure math, no I/O. Shared by the eligibility action and the funded-loan
side effect.
"""

from dataclasses import dataclass

from db.enums import LoanType

BASE_MAX_AMOUNT = 1_000_000
ABSOLUTE_MAX_AMOUNT = 50_000_000

STANDARD_REQUIREMENTS = (
    "Valid business license",
    "Financial statements (last 2 years)",
    "Tax returns (business and personal)",
    "Bank statements (last 6 months)",
    "Business plan or project description",
)


@dataclass(frozen=True)
class LoanTypeTerms:
    amount_multiplier: float
    min_rate: float
    max_rate: float
    term_options: tuple[str, ...]


DEFAULT_TERMS = LoanTypeTerms(1.0, 4.0, 10.0, ("2 years", "5 years", "10 years"))

LOAN_TYPE_TERMS: dict[LoanType, LoanTypeTerms] = {
    LoanType.REFINANCE: LoanTypeTerms(
        1.2, 3.5, 6.5, ("5 years", "10 years", "15 years", "20 years", "25 years"),
    ),
    LoanType.BRIDGE_LOAN: LoanTypeTerms(
        0.8, 6.0, 12.0, ("6 months", "12 months", "18 months", "24 months"),
    ),
    LoanType.WORKING_CAPITAL: LoanTypeTerms(
        0.6, 4.0, 8.0, ("1 year", "2 years", "3 years", "5 years"),
    ),
}


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    max_loan_amount: float
    min_rate: float
    max_rate: float
    term_options: list[str]
    requirements: list[str]


def calculate_eligibility(
    loan_type: LoanType,
    years_in_business: int,
    amount_requested: float | None = None,
) -> EligibilityResult:
    """Estimate the maximum loan amount, rate range and terms for a business."""
    base_amount = float(BASE_MAX_AMOUNT)
    requirements = list(STANDARD_REQUIREMENTS)

    if years_in_business >= 5:
        base_amount *= 5
    elif years_in_business >= 2:
        base_amount *= 2
    elif years_in_business < 1:
        base_amount *= 0.5
        requirements.append("Minimum 1 year in business preferred")

    terms = LOAN_TYPE_TERMS.get(loan_type, DEFAULT_TERMS)
    base_amount *= terms.amount_multiplier
    max_amount = min(base_amount, ABSOLUTE_MAX_AMOUNT)

    eligible = amount_requested is None or amount_requested <= max_amount

    return EligibilityResult(
        eligible=eligible,
        max_loan_amount=round(max_amount, 2),
        min_rate=terms.min_rate,
        max_rate=terms.max_rate,
        term_options=list(terms.term_options),
        requirements=requirements,
    )


def monthly_payment(principal: float, annual_rate_pct: float, term_months: int) -> float:
    """Standard amortizing payment; 0 for a non-positive principal."""
    if principal <= 0 or term_months <= 0:
        return 0.0

    monthly_rate = annual_rate_pct / 100 / 12
    if monthly_rate > 0:
        compound = (1 + monthly_rate) ** term_months
        payment = principal * monthly_rate * compound / (compound - 1)
    else:
        payment = principal / term_months

    return round(payment, 2)
