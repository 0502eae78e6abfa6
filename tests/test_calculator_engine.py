"""
Unit tests for the earnings engine.
Validates currency conversion, model share and presentation rounding.
"""
from decimal import Decimal

import pytest

from studio_admin.calculator.engine import (
    CalculatorSettings,
    ConversionType,
    PercentageRule,
    PlatformRule,
    Rates,
    compute_totals,
    min_quota_alert,
    resolve_percentage,
    usd_bruto_for,
)

RATES = Rates(usd_cop=Decimal("3900"), eur_usd=Decimal("1.01"), gbp_usd=Decimal("1.20"))
MODELKA = PlatformRule(id="modelka", conversion_type=ConversionType.EUR_USD_COP)
SKYPVT = PlatformRule(id="skypvt", conversion_type=ConversionType.USD_COP, discount_factor=Decimal("0.75"))


def settings_for(platforms, percentage, **kwargs):
    return CalculatorSettings(
        enabled_platforms=frozenset(platforms),
        percentage_rule=PercentageRule(percentage_model=Decimal(percentage), **kwargs),
    )


def test_reference_example():
    """3 EUR on modelka plus 20 USD on skypvt at 70%."""
    result = compute_totals(
        [MODELKA, SKYPVT],
        {"modelka": Decimal("3"), "skypvt": Decimal("20")},
        RATES,
        settings_for({"modelka", "skypvt"}, 70),
    )

    by_platform = {p.platform_id: p for p in result.per_platform}
    assert by_platform["modelka"].usd_bruto == Decimal("3.03")
    assert by_platform["skypvt"].usd_bruto == Decimal("15.00")
    assert result.total_usd_bruto == Decimal("18.03")
    assert result.total_usd_modelo == Decimal("12.621")
    assert result.total_cop_modelo == Decimal("49221.9")


def test_presentation_rounds_after_aggregation():
    result = compute_totals(
        [MODELKA, SKYPVT],
        {"modelka": Decimal("3"), "skypvt": Decimal("20")},
        RATES,
        settings_for({"modelka", "skypvt"}, 70),
    )
    payload = result.as_dict()

    assert payload["total_usd_modelo"] == Decimal("12.62")
    assert payload["total_cop_modelo"] == Decimal("49221.90")
    assert payload["advance_max_cop"] == Decimal("44299.71")


def test_usd_bruto_linear_in_value_and_rate():
    base = usd_bruto_for(MODELKA, Decimal("10"), RATES)
    doubled_value = usd_bruto_for(MODELKA, Decimal("20"), RATES)
    doubled_rate = usd_bruto_for(
        MODELKA, Decimal("10"), Rates(RATES.usd_cop, RATES.eur_usd * 2, RATES.gbp_usd)
    )

    assert doubled_value == base * 2
    assert doubled_rate == base * 2


def test_usd_with_discount_is_value_times_discount():
    assert usd_bruto_for(SKYPVT, Decimal("40"), RATES) == Decimal("30.00")


def test_gbp_and_tokens_conversion():
    gbp = PlatformRule(id="babestation", conversion_type=ConversionType.GBP_USD_COP, tax_factor=Decimal("0.8"))
    tokens = PlatformRule(id="chaturbate", conversion_type=ConversionType.TOKENS, token_rate_usd=Decimal("0.05"))

    assert usd_bruto_for(gbp, Decimal("10"), RATES) == Decimal("9.600")
    assert usd_bruto_for(tokens, Decimal("1000"), RATES) == Decimal("50.00")


def test_tokens_without_rate_rejected():
    rule = PlatformRule(id="broken", conversion_type=ConversionType.TOKENS)
    with pytest.raises(ValueError):
        usd_bruto_for(rule, Decimal("10"), RATES)


def test_disabled_platforms_do_not_contribute():
    result = compute_totals(
        [MODELKA, SKYPVT],
        {"modelka": Decimal("3"), "skypvt": Decimal("20")},
        RATES,
        settings_for({"skypvt"}, 80),
    )

    assert [p.platform_id for p in result.per_platform] == ["skypvt"]
    assert result.total_usd_bruto == Decimal("15.00")


def test_model_share_ratio_matches_percentage():
    result = compute_totals(
        [MODELKA, SKYPVT],
        {"modelka": Decimal("123.45"), "skypvt": Decimal("67.8")},
        RATES,
        settings_for({"modelka", "skypvt"}, 65),
    )

    assert result.total_usd_modelo / result.total_usd_bruto == Decimal("0.65")


def test_zero_group_percentage_is_respected():
    """A sede configured at 0% must not fall back to the default."""
    percentage = resolve_percentage(None, Decimal("0"))
    result = compute_totals(
        [SKYPVT],
        {"skypvt": Decimal("100")},
        RATES,
        settings_for({"skypvt"}, percentage),
    )

    assert percentage == Decimal("0")
    assert result.total_usd_modelo == Decimal("0")


def test_percentage_fallback_order():
    assert resolve_percentage(Decimal("60"), Decimal("70")) == Decimal("60")
    assert resolve_percentage(None, Decimal("70")) == Decimal("70")
    assert resolve_percentage(None, None) == Decimal("80")


def test_full_share_and_platform_override():
    full = PlatformRule(id="dxlive", conversion_type=ConversionType.USD_COP, full_model_share=True)
    result = compute_totals(
        [full, SKYPVT],
        {"dxlive": Decimal("10"), "skypvt": Decimal("20")},
        RATES,
        settings_for({"dxlive", "skypvt"}, 70, overrides={"skypvt": Decimal("50")}),
    )
    by_platform = {p.platform_id: p for p in result.per_platform}

    assert by_platform["dxlive"].usd_modelo == Decimal("10")
    assert by_platform["skypvt"].usd_modelo == Decimal("7.50")


def test_negative_value_rejected():
    with pytest.raises(ValueError):
        compute_totals([SKYPVT], {"skypvt": Decimal("-1")}, RATES, settings_for({"skypvt"}, 80))


def test_min_quota_alert_is_informational():
    alert = min_quota_alert(Decimal("150"), Decimal("200"))

    assert alert["below"] is True
    assert alert["percent_to_reach"] == Decimal("25.00")
    assert min_quota_alert(Decimal("250"), Decimal("200"))["below"] is False
    assert min_quota_alert(Decimal("10"), None) is None
