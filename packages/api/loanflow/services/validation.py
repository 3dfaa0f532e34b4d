# This project was developed with assistance from AI tools.
"""Application validation and risk scoring.

Pure functions: identical input and policy always produce identical output.
Thresholds come from ``RiskPolicy`` so they can be tuned by configuration.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from ..core.config import RiskPolicy, settings
from ..schemas.application import ApplicationData

_PHONE_CHARS = re.compile(r"[\d\s\-()+.]+")
_PHONE_DIGITS = re.compile(r"[1-9]\d{6,14}")
_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")

MAX_INTEREST_RATE = 100.0
MAX_TERM_MONTHS = 480


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    risk_score: int
    auto_approval_eligible: bool
    errors: list[str] = field(default_factory=list)


def check_name(value: str, label: str) -> str | None:
    if len(value.strip()) < 2:
        return f"{label} must be at least 2 characters"
    return None


def check_business_name(value: str) -> str | None:
    if len(value.strip()) < 2:
        return "Business name is required"
    return None


def check_amount(amount: float, policy: RiskPolicy) -> str | None:
    if amount < policy.min_amount:
        return f"Minimum loan amount is ${policy.min_amount:,.0f}"
    if amount > policy.max_amount:
        return f"Maximum loan amount is ${policy.max_amount:,.0f}"
    return None


def check_phone(value: str) -> str | None:
    """Formatting characters only; 7-15 digits, not one digit repeated."""
    if not _PHONE_CHARS.fullmatch(value.strip()):
        return "Invalid phone number format"
    digits = re.sub(r"\D", "", value)
    if not _PHONE_DIGITS.fullmatch(digits) or len(set(digits)) == 1:
        return "Invalid phone number format"
    return None


def parse_interest_rate(value: Any) -> float | None:
    """Annual rate in percent, or None when absent or not a usable number."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not 0 < value <= MAX_INTEREST_RATE:
        return None
    return float(value)


def parse_term_months(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if not 1 <= value <= MAX_TERM_MONTHS:
        return None
    return value


def check_loan_terms(details: dict[str, Any]) -> list[str]:
    """Declared rate and term are used to build the funded loan record."""
    errors = []
    rate, term = details.get("interest_rate"), details.get("term_months")
    if rate is not None and parse_interest_rate(rate) is None:
        errors.append(f"Interest rate must be a number between 0 and {MAX_INTEREST_RATE:g}")
    if term is not None and parse_term_months(term) is None:
        errors.append(f"Term must be a whole number of months between 1 and {MAX_TERM_MONTHS}")
    return errors


def check_email(value: str) -> str | None:
    if not _EMAIL_RE.fullmatch(value.strip()):
        return "Invalid email format"
    return None


def score_risk(data: ApplicationData, policy: RiskPolicy) -> int:
    """Additive risk score clamped to the policy bounds."""
    risk = policy.base_score

    years = data.years_in_business
    if years >= policy.established_years:
        risk += policy.established_adjustment
    elif years >= policy.growing_years:
        risk += policy.growing_adjustment
    elif years < policy.startup_years:
        risk += policy.startup_adjustment

    if data.amount_requested > policy.large_amount:
        risk += policy.large_amount_adjustment
    elif data.amount_requested < policy.small_amount:
        risk += policy.small_amount_adjustment

    risk += policy.loan_type_adjustments.get(data.loan_type.value, 0)

    return max(policy.min_score, min(policy.max_score, risk))


def validate_application(data: ApplicationData, policy: RiskPolicy | None = None) -> ValidationResult:
    """Validate borrower fields and score risk.

    Every failing rule contributes one message; the risk score is computed
    regardless so callers can show it alongside the errors.
    """
    policy = policy or settings.RISK
    checks = (
        check_name(data.first_name, "First name"),
        check_name(data.last_name, "Last name"),
        check_business_name(data.business_name),
        check_amount(data.amount_requested, policy),
        check_email(data.email),
        check_phone(data.phone),
    )
    errors = [error for error in checks if error]
    errors.extend(check_loan_terms(data.loan_details))
    is_valid = not errors
    risk_score = score_risk(data, policy)

    return ValidationResult(
        is_valid=is_valid,
        risk_score=risk_score,
        auto_approval_eligible=is_valid and risk_score < policy.auto_approval_threshold,
        errors=errors,
    )
