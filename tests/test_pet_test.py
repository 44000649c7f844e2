import pytest

from pdcare.services.pet_test import DEFAULT_PET_VALUES, calculate_pet_ratios, classify_transport


@pytest.mark.parametrize("dp_creatinine, expected", [
    (0.81, "High (H)"),
    (0.95, "High (H)"),
    (0.80, "High Average (HA)"),
    (0.65, "High Average (HA)"),
    (0.50, "Low Average (LA)"),
    (0.34, "Low (L)"),
    (0.20, "Very Low"),
    (None, "N/A"),
])
def test_classify_transport(dp_creatinine, expected):
    assert classify_transport(dp_creatinine) == expected


def test_ratios_from_sample_values():
    result = calculate_pet_ratios(DEFAULT_PET_VALUES)

    assert result.dp_creatinine_2h == pytest.approx(5.8 / 12.0)
    assert result.dp_creatinine_4h == pytest.approx(8.65 / 12.0)
    assert result.dd0_glucose_2h == pytest.approx(995.0 / 1800.0)
    assert result.dd0_glucose_4h == pytest.approx(622.0 / 1800.0)
    assert result.transport_type == "High Average (HA)"


def test_missing_or_zero_operands_give_no_ratio():
    values = dict(DEFAULT_PET_VALUES, serum_creatinine=0, dialysate_glucose_4h=None)
    del values["dialysate_glucose_2h"]

    result = calculate_pet_ratios(values)

    assert result.dp_creatinine_2h is None
    assert result.dp_creatinine_4h is None
    assert result.dd0_glucose_2h is None
    assert result.dd0_glucose_4h is None
    assert result.transport_type == "N/A"
