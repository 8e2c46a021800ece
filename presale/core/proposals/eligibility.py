import re
from datetime import datetime, timezone
from typing import Optional

from presale.core.proposals.models import PolicyDetails

DAYS_PER_YEAR = 365.25
COMPREHENSIVE_TERMS = {"COMP_1", "COMP_2", "COMP_3"}
PRIVATE_VEHICLE_TYPES = {"PRIVATE", "PRIVATE CAR"}

_LEADING_DIGITS = re.compile(r"^\s*([+-]?\d+)")


def parse_year_of_manufacture(value: Optional[str]) -> Optional[int]:
    """Integer prefix of a captured year string, ``None`` when it has none."""
    if value is None:
        return None
    match = _LEADING_DIGITS.match(str(value))
    if match is None:
        return None
    return int(match.group(1))


def requires_previous_policy_details(
    policy_details: PolicyDetails, *, now: Optional[datetime] = None
) -> bool:
    """Decide whether the conditional previous-policy stage applies.

    Only private-car rollover motor policies qualify. A standalone own-damage
    policy needs the prior cover when the vehicle is strictly between one and
    three years old; a comprehensive policy needs it for vehicles older than
    300 days but younger than one year.
    """
    if policy_details.policy_type != "GEN_MOTOR":
        return False
    if policy_details.policy_for != "ROLLOVER":
        return False
    if policy_details.vehicle_class != "PRIVATE":
        return False
    if policy_details.vehicle_type not in PRIVATE_VEHICLE_TYPES:
        return False

    year = parse_year_of_manufacture(policy_details.year_of_manufacture)
    if year is None or not 1 <= year <= 9999:
        return False

    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    manufactured = datetime(year, 1, 1, tzinfo=timezone.utc)
    age_in_days = (current - manufactured).total_seconds() / 86400
    age_in_years = age_in_days / DAYS_PER_YEAR

    term = str(policy_details.policy_term)
    if term == "SAOD":
        return 1 < age_in_years < 3
    if term in COMPREHENSIVE_TERMS:
        return age_in_days > 300 and age_in_years < 1
    return False
