# pet_test.py
# Peritoneal Equilibration Test ratios and membrane transport classification

from typing import Dict, Optional

from pdcare.core.models import PetResult
from pdcare.services.parsing import as_float

# (lower bound of 4h D/P creatinine, label), highest first
TRANSPORT_CLASSES = [
    (0.81, "High (H)"),
    (0.65, "High Average (HA)"),
    (0.50, "Low Average (LA)"),
    (0.34, "Low (L)"),
]

# Sample lab values used to prefill the PET form
DEFAULT_PET_VALUES = {
    "serum_creatinine": 12.0,
    "dialysate_creatinine_2h": 5.8,
    "dialysate_creatinine_4h": 8.65,
    "dialysate_glucose_0h": 1800.0,
    "dialysate_glucose_2h": 995.0,
    "dialysate_glucose_4h": 622.0,
}


def _ratio(numerator, denominator) -> Optional[float]:
    top = as_float(numerator)
    bottom = as_float(denominator)
    if not top or not bottom:
        return None
    return top / bottom


def classify_transport(dp_creatinine_4h: Optional[float]) -> str:
    if dp_creatinine_4h is None:
        return "N/A"
    for lower, label in TRANSPORT_CLASSES:
        if dp_creatinine_4h >= lower:
            return label
    return "Very Low"


def calculate_pet_ratios(values: Dict[str, object]) -> PetResult:
    """
    Compute D/P creatinine and D/D0 glucose at 2 and 4 hours

    Args:
        values: Lab values keyed like DEFAULT_PET_VALUES; missing keys count as absent

    Returns:
        PetResult with None for any ratio whose operands are missing or zero
    """
    serum_creatinine = values.get("serum_creatinine")
    glucose_0h = values.get("dialysate_glucose_0h")

    dp_4h = _ratio(values.get("dialysate_creatinine_4h"), serum_creatinine)
    return PetResult(
        dp_creatinine_2h=_ratio(values.get("dialysate_creatinine_2h"), serum_creatinine),
        dp_creatinine_4h=dp_4h,
        dd0_glucose_2h=_ratio(values.get("dialysate_glucose_2h"), glucose_0h),
        dd0_glucose_4h=_ratio(values.get("dialysate_glucose_4h"), glucose_0h),
        transport_type=classify_transport(dp_4h),
    )
