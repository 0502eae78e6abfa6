"""
Reference FX rates from public sources.

Sources are queried in priority order. A failing source never aborts the
lookup: its error is recorded and the next source fills the gap.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from studio_admin.core.config import settings
from studio_admin.core.exceptions import RateSourceError
from studio_admin.core.logger import logger
from studio_admin.core.utils import utcnow

DATOS_ABIERTOS_URL = "https://www.datos.gov.co/api/views/dit9-nnvp/rows.json?$limit=1&$order=:id"
EXCHANGERATE_API_URL = "https://api.exchangerate-api.com/v4/latest/USD"
FIXER_URL = "https://api.fixer.io/latest?base=USD"

RATE_KEYS = ("usd_cop", "eur_usd", "gbp_usd")


@dataclass
class SourceResult:
    """Rates reported by one source; missing kinds stay None."""
    source: str
    usd_cop: Optional[Decimal] = None
    eur_usd: Optional[Decimal] = None
    gbp_usd: Optional[Decimal] = None
    fetched_at: datetime = field(default_factory=utcnow)


@dataclass
class ReferenceRates:
    usd_cop: Optional[Decimal] = None
    eur_usd: Optional[Decimal] = None
    gbp_usd: Optional[Decimal] = None
    sources: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "usd_cop": self.usd_cop,
            "eur_usd": self.eur_usd,
            "gbp_usd": self.gbp_usd,
            "sources": self.sources,
            "errors": self.errors,
        }


def build_session() -> requests.Session:
    """HTTP session with bounded retries and backoff."""
    session = requests.Session()
    retry_strategy = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"]
    )
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Accept": "application/json"})
    return session


def _positive_decimal(value: object, label: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise RateSourceError(f"{label}: invalid value {value!r}")
    if not number.is_finite() or number <= 0:
        raise RateSourceError(f"{label}: non-positive value {value!r}")
    return number


def _get_json(session: requests.Session, url: str, timeout: float) -> dict:
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except requests.exceptions.RequestException as e:
        raise RateSourceError(f"request failed: {str(e)}")
    except ValueError as e:
        raise RateSourceError(f"invalid JSON: {str(e)}")
    if not isinstance(payload, dict):
        raise RateSourceError(f"unexpected payload type {type(payload).__name__}")
    return payload


def fetch_datos_abiertos(session: requests.Session, timeout: float) -> SourceResult:
    """Official Colombian TRM (USD→COP only). Rows are positional; the TRM sits at index 1."""
    payload = _get_json(session, DATOS_ABIERTOS_URL, timeout)
    rows = payload.get("data") or []
    if not isinstance(rows, list) or not rows:
        raise RateSourceError("datos.gov.co: empty dataset")
    if not isinstance(rows[0], list) or len(rows[0]) < 2:
        raise RateSourceError("datos.gov.co: unexpected row layout")
    return SourceResult(source="datos_abiertos", usd_cop=_positive_decimal(rows[0][1], "datos.gov.co"))


def _from_usd_base(payload: dict, source: str) -> SourceResult:
    rates = payload.get("rates") or {}
    if not isinstance(rates, dict) or not rates:
        raise RateSourceError(f"{source}: missing rates")
    result = SourceResult(source=source)
    if "COP" in rates:
        result.usd_cop = _positive_decimal(rates["COP"], source)
    # The feed is USD based; EUR→USD and GBP→USD are the inverses
    if "EUR" in rates:
        result.eur_usd = Decimal(1) / _positive_decimal(rates["EUR"], source)
    if "GBP" in rates:
        result.gbp_usd = Decimal(1) / _positive_decimal(rates["GBP"], source)
    return result


def fetch_exchangerate_api(session: requests.Session, timeout: float) -> SourceResult:
    return _from_usd_base(_get_json(session, EXCHANGERATE_API_URL, timeout), "exchangerate_api")


def fetch_fixer(session: requests.Session, timeout: float) -> SourceResult:
    return _from_usd_base(_get_json(session, FIXER_URL, timeout), "fixer")


DEFAULT_SOURCES: List[Callable[[requests.Session, float], SourceResult]] = [
    fetch_datos_abiertos,
    fetch_exchangerate_api,
    fetch_fixer,
]


def combine_rate_results(results: List[SourceResult], errors: Optional[List[str]] = None) -> ReferenceRates:
    """First successful value per kind wins, in the order results were produced."""
    combined = ReferenceRates(errors=list(errors or []))
    for result in results:
        for key in RATE_KEYS:
            value = getattr(result, key)
            if value is not None and getattr(combined, key) is None:
                setattr(combined, key, value)
                combined.sources[key] = result.source
    for key in RATE_KEYS:
        if getattr(combined, key) is None:
            combined.errors.append(f"{key}: no source available")
    return combined


def get_external_reference_rates(
    session: Optional[requests.Session] = None,
    sources: Optional[List[Callable[[requests.Session, float], SourceResult]]] = None,
    timeout: Optional[float] = None,
) -> ReferenceRates:
    """Queries every source and merges the answers. Never raises on source failures."""
    session = session or build_session()
    timeout = timeout if timeout is not None else settings.RATE_SOURCE_TIMEOUT_SECONDS
    results: List[SourceResult] = []
    errors: List[str] = []

    for fetch in sources if sources is not None else DEFAULT_SOURCES:
        try:
            results.append(fetch(session, timeout))
        except RateSourceError as e:
            logger.warning(f"Rate source {fetch.__name__} failed: {str(e)}")
            errors.append(f"{fetch.__name__}: {str(e)}")
        except Exception as e:
            # A source must never break the lookup, whatever it returns
            logger.error(f"Rate source {fetch.__name__} crashed: {str(e)}", exc_info=True)
            errors.append(f"{fetch.__name__}: unexpected error {type(e).__name__}")

    combined = combine_rate_results(results, errors)
    logger.info(f"Reference rates resolved from {sorted(set(combined.sources.values()))}")
    return combined
