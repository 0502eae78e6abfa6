"""
Earnings engine: converts platform earnings to USD, applies the model share and
converts to COP.

Pure functions over Decimal. Nothing here touches the database so the same
code serves live totals, period archival and the shop funds check.

    usd_bruto  = value x fx(conversion_type) x tax_factor x discount_factor   (>= 0)
    usd_modelo = usd_bruto x percentage / 100
    cop_modelo = usd_modelo x USD_COP
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from studio_admin.core.utils import round_money, to_decimal

HUNDRED = Decimal(100)
ZERO = Decimal(0)


class ConversionType(str, enum.Enum):
    USD_COP = "usd_cop"
    EUR_USD_COP = "eur_usd_cop"
    GBP_USD_COP = "gbp_usd_cop"
    TOKENS = "tokens"


@dataclass(frozen=True)
class Rates:
    usd_cop: Decimal
    eur_usd: Decimal
    gbp_usd: Decimal

    def as_dict(self) -> Dict[str, Decimal]:
        return {"usd_cop": self.usd_cop, "eur_usd": self.eur_usd, "gbp_usd": self.gbp_usd}


@dataclass(frozen=True)
class PlatformRule:
    id: str
    conversion_type: ConversionType
    discount_factor: Optional[Decimal] = None
    tax_factor: Optional[Decimal] = None
    token_rate_usd: Optional[Decimal] = None
    full_model_share: bool = False
    name: str = ""


@dataclass(frozen=True)
class PercentageRule:
    """Share of the gross that goes to the model, 0-100, with per-platform overrides."""
    percentage_model: Decimal
    overrides: Mapping[str, Decimal] = field(default_factory=dict)

    def for_platform(self, rule: PlatformRule) -> Decimal:
        if rule.full_model_share:
            return HUNDRED
        override = self.overrides.get(rule.id)
        if override is not None:
            return to_decimal(override)
        return self.percentage_model


@dataclass(frozen=True)
class CalculatorSettings:
    enabled_platforms: FrozenSet[str]
    percentage_rule: PercentageRule
    min_quota_usd: Optional[Decimal] = None
    advance_max_ratio: Decimal = Decimal("0.90")


@dataclass(frozen=True)
class PlatformTotals:
    platform_id: str
    value: Decimal
    usd_bruto: Decimal
    percentage: Decimal
    usd_modelo: Decimal
    cop_modelo: Decimal


@dataclass
class CalcResult:
    per_platform: List[PlatformTotals]
    total_usd_bruto: Decimal
    total_usd_modelo: Decimal
    total_cop_modelo: Decimal
    advance_max_cop: Decimal
    min_quota_alert: Optional[Dict[str, object]] = None

    def as_dict(self) -> Dict[str, object]:
        """Presentation form. Rounding happens here, after aggregation."""
        return {
            "per_platform": [
                {
                    "platform_id": p.platform_id,
                    "value": p.value,
                    "usd_bruto": round_money(p.usd_bruto),
                    "percentage": p.percentage,
                    "usd_modelo": round_money(p.usd_modelo),
                    "cop_modelo": round_money(p.cop_modelo),
                }
                for p in self.per_platform
            ],
            "total_usd_bruto": round_money(self.total_usd_bruto),
            "total_usd_modelo": round_money(self.total_usd_modelo),
            "total_cop_modelo": round_money(self.total_cop_modelo),
            "advance_max_cop": round_money(self.advance_max_cop),
            "min_quota_alert": self.min_quota_alert,
        }


def resolve_percentage(
    percentage_override: Optional[Decimal],
    group_percentage: Optional[Decimal],
    default: Decimal = Decimal(80),
) -> Decimal:
    """override, else group, else default. A configured 0 is a valid percentage."""
    if percentage_override is not None:
        return to_decimal(percentage_override)
    if group_percentage is not None:
        return to_decimal(group_percentage)
    return to_decimal(default)


def usd_bruto_for(rule: PlatformRule, value: Decimal, rates: Rates) -> Decimal:
    value = to_decimal(value)
    if rule.conversion_type == ConversionType.EUR_USD_COP:
        usd = value * rates.eur_usd
    elif rule.conversion_type == ConversionType.GBP_USD_COP:
        usd = value * rates.gbp_usd
    elif rule.conversion_type == ConversionType.TOKENS:
        if rule.token_rate_usd is None:
            raise ValueError(f"Platform {rule.id} converts tokens but has no token rate")
        usd = value * to_decimal(rule.token_rate_usd)
    else:
        usd = value

    if rule.tax_factor is not None:
        usd *= to_decimal(rule.tax_factor)
    if rule.discount_factor is not None:
        usd *= to_decimal(rule.discount_factor)

    return max(usd, ZERO)


def min_quota_alert(total_usd_bruto: Decimal, min_quota_usd: Optional[Decimal]) -> Optional[Dict[str, object]]:
    """Informational only; never blocks anything."""
    if min_quota_usd is None or to_decimal(min_quota_usd) <= 0:
        return None
    quota = to_decimal(min_quota_usd)
    below = total_usd_bruto < quota
    reached = min(total_usd_bruto / quota * HUNDRED, HUNDRED)
    return {
        "below": below,
        "min_quota_usd": quota,
        "percent_to_reach": round_money(HUNDRED - reached) if below else ZERO,
    }


def compute_totals(
    platform_rules: Iterable[PlatformRule],
    value_inputs: Mapping[str, Decimal],
    rates: Rates,
    config: CalculatorSettings,
) -> CalcResult:
    """
    Computes per-platform and aggregate earnings for one model.

    `value_inputs` maps platform id to the amount reported in the platform's
    currency. Platforms that are disabled, unknown or without a value are
    skipped.
    """
    per_platform: List[PlatformTotals] = []
    total_bruto = ZERO
    total_modelo = ZERO

    for rule in platform_rules:
        if rule.id not in config.enabled_platforms or rule.id not in value_inputs:
            continue
        value = to_decimal(value_inputs[rule.id])
        if value < 0:
            raise ValueError(f"Negative value for platform {rule.id}")

        bruto = usd_bruto_for(rule, value, rates)
        percentage = config.percentage_rule.for_platform(rule)
        modelo = bruto * percentage / HUNDRED

        per_platform.append(PlatformTotals(
            platform_id=rule.id,
            value=value,
            usd_bruto=bruto,
            percentage=percentage,
            usd_modelo=modelo,
            cop_modelo=modelo * rates.usd_cop,
        ))
        total_bruto += bruto
        total_modelo += modelo

    total_cop = total_modelo * rates.usd_cop

    return CalcResult(
        per_platform=per_platform,
        total_usd_bruto=total_bruto,
        total_usd_modelo=total_modelo,
        total_cop_modelo=total_cop,
        advance_max_cop=total_cop * to_decimal(config.advance_max_ratio),
        min_quota_alert=min_quota_alert(total_bruto, config.min_quota_usd),
    )
