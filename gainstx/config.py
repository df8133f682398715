"""
gainstx/config.py

Runtime configuration loaded from the environment (.env at project root),
and the per-tax-year disposal-method selector.

The disposal map is a JSON object keyed by year (or "default"):

    {
      "default": "FIFO",
      "2017": "LIFO",
      "2018": {"method": "Estimate", "short_term_tax_rate": 0.35, "long_term_tax_rate": 0.15},
      "2019": "TaxMin"
    }

It comes from DISPOSAL_METHODS (inline JSON) or DISPOSAL_METHODS_FILE
(path to a JSON file). Entries are validated lazily, the first time a year
is looked up, and a bad entry raises DisposalConfigError naming the year.
"""

import json
import logging
import os
from decimal import Decimal
from enum import Enum
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from gainstx.constants import DEFAULT_LONG_TERM_TAX_RATE, DEFAULT_SHORT_TERM_TAX_RATE
from gainstx.errors import DisposalConfigError

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)
load_dotenv(dotenv_path=os.path.join(PROJECT_ROOT, ".env"))

# ---------------------------------------------------------
# Environment settings
# ---------------------------------------------------------
PRICE_API_URL = os.getenv("PRICE_API_URL", "https://api.coingecko.com/api/v3")
PRICE_API_TIMEOUT = float(os.getenv("PRICE_API_TIMEOUT", "10"))

default_origins = (
    "http://127.0.0.1:5173,"
    "http://localhost:5173,"
    "http://127.0.0.1:8000,"
    "http://localhost:8000"
)
raw_origins = os.getenv("CORS_ALLOW_ORIGINS", default_origins)
ALLOWED_ORIGINS = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

DEFAULT_DISPOSAL_METHODS = {"default": "FIFO"}
DEFAULT_KEY = "default"


# ---------------------------------------------------------
# Disposal policy
# ---------------------------------------------------------
class DisposalMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    TAX_MIN = "TaxMin"
    ESTIMATE = "Estimate"


class DisposalPolicy(BaseModel):
    """
    Lot-selection strategy for one tax year. Only Estimate uses the tax
    rates; both must lie strictly between 0 and 1.
    """
    model_config = ConfigDict(frozen=True)

    method: DisposalMethod
    short_term_tax_rate: Decimal = DEFAULT_SHORT_TERM_TAX_RATE
    long_term_tax_rate: Decimal = DEFAULT_LONG_TERM_TAX_RATE

    @field_validator("method", mode="before")
    def match_method_name(cls, v):
        if isinstance(v, str):
            for method in DisposalMethod:
                if method.value.lower() == v.strip().lower():
                    return method
            allowed = ", ".join(m.value for m in DisposalMethod)
            raise ValueError(f"unknown disposal method '{v}' (expected one of: {allowed})")
        return v

    @model_validator(mode="after")
    def check_rates(self):
        if self.method == DisposalMethod.ESTIMATE:
            for name in ("short_term_tax_rate", "long_term_tax_rate"):
                rate = getattr(self, name)
                if not (Decimal("0") < rate < Decimal("1")):
                    raise ValueError(f"{name} must be between 0 and 1 (exclusive), got {rate}")
        return self


class DisposalConfig:
    """
    Resolves the DisposalPolicy for a tax year. Policies are validated and
    cached on first lookup; years without an entry fall back to "default".
    """

    def __init__(self, methods: Mapping):
        self._raw: Dict[str, object] = {str(k).strip(): v for k, v in methods.items()}
        self._policies: Dict[int, DisposalPolicy] = {}

    def get_policy(self, year: int) -> DisposalPolicy:
        year = int(year)
        policy = self._policies.get(year)
        if policy is not None:
            return policy

        raw = self._raw.get(str(year), self._raw.get(DEFAULT_KEY))
        if raw is None:
            raise DisposalConfigError(
                f"No disposal method configured for {year} and no '{DEFAULT_KEY}' entry."
            )
        if isinstance(raw, str):
            raw = {"method": raw}

        try:
            policy = DisposalPolicy.model_validate(raw)
        except ValidationError as e:
            details = "; ".join(err["msg"] for err in e.errors())
            raise DisposalConfigError(f"Invalid disposal method for {year}: {details}") from e

        logger.info(f"Disposal method for {year}: {policy.method.value}")
        self._policies[year] = policy
        return policy

    def get_disposal_method(self, year: int) -> str:
        return self.get_policy(year).method.value

    @classmethod
    def from_json(cls, text: str) -> "DisposalConfig":
        try:
            methods = json.loads(text)
        except json.JSONDecodeError as e:
            raise DisposalConfigError(f"Disposal methods are not valid JSON: {e}") from e
        if not isinstance(methods, dict):
            raise DisposalConfigError("Disposal methods must be a JSON object keyed by year.")
        return cls(methods)

    @classmethod
    def from_env(cls, environ: Optional[Mapping] = None) -> "DisposalConfig":
        environ = os.environ if environ is None else environ
        inline = environ.get("DISPOSAL_METHODS")
        path = environ.get("DISPOSAL_METHODS_FILE")

        if inline:
            return cls.from_json(inline)
        if path:
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    return cls.from_json(fh.read())
            except OSError as e:
                raise DisposalConfigError(f"Cannot read disposal methods file {path}: {e}") from e
        return cls(DEFAULT_DISPOSAL_METHODS)
