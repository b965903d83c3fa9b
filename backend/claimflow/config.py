"""Policy and runtime settings.

Everything tunable lives in ``config/policy.yaml``. ``load_settings`` reads
it once into frozen pydantic models that are handed to each component;
business code never looks at files or the environment itself.

Invariants:
    - unknown sections and keys are rejected
    - values are type-checked on load; numeric strings are coerced
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

logger = structlog.get_logger(__name__)

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_POLICY_PATH = ROOT / "config" / "policy.yaml"

CATEGORIES = (
    "travel",
    "meals",
    "accommodation",
    "office_supplies",
    "software",
    "training",
    "client_entertainment",
    "transportation",
    "miscellaneous",
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ValidationRules(_Section):
    max_amount: float = 10_000
    min_description_length: int = 3
    categories: Tuple[str, ...] = CATEGORIES


class PolicyRules(_Section):
    category_limits: Dict[str, float] = Field(default_factory=lambda: {
        "travel": 2000,
        "meals": 75,
        "accommodation": 500,
        "office_supplies": 200,
        "software": 500,
        "training": 1500,
        "client_entertainment": 300,
        "transportation": 150,
        "miscellaneous": 100,
    })
    evidence_required_above: float = 25
    scrutiny_thresholds: Dict[str, float] = Field(default_factory=lambda: {
        "client_entertainment": 150,
        "miscellaneous": 50,
        "meals": 50,
    })


class RiskRules(_Section):
    medium_threshold: int = 30
    high_threshold: int = 60

    round_amounts: Tuple[float, ...] = (50, 100, 200, 250, 500, 750, 1000, 1500, 2000, 5000)
    round_amount_epsilon: float = 0.001
    round_amount_points: int = 15

    # threshold -> explanation
    threshold_amounts: Dict[float, str] = Field(default_factory=lambda: {
        24.99: "just below evidence threshold ($25)",
        74.99: "just below meals limit ($75)",
        99.99: "just below miscellaneous limit ($100)",
        149.99: "just below transportation limit ($150)",
        499.99: "just below software/accommodation limit ($500)",
    })
    threshold_tolerance: float = 1.0
    threshold_points: int = 25

    keywords: Tuple[str, ...] = ("test", "asdf", "xxx", "fake", "dummy", "n/a", "none", "misc")
    keyword_points: int = 20

    min_description_length: int = 10
    short_description_points: int = 15
    generic_descriptions: Tuple[str, ...] = ("expense", "claim", "reimbursement", "business", "work")
    generic_description_points: int = 15

    high_amount_floor: float = 100
    missing_evidence_points: int = 20

    category_norms: Dict[str, float] = Field(default_factory=lambda: {
        "meals": 50,
        "transportation": 75,
        "office_supplies": 100,
    })
    norm_multiplier: float = 2.0
    above_norm_points: int = 10


class RetrySettings(_Section):
    policy_attempts: int = Field(2, ge=1)
    risk_attempts: int = Field(3, ge=1)
    backoff_seconds: float = Field(0.0, ge=0)
    jitter: bool = False


class StorageSettings(_Section):
    url: Optional[str] = None  # None -> in-memory
    page_size: int = Field(20, ge=1)


class ChaosSettings(_Section):
    enabled: bool = False
    trigger_cents: int = Field(13, ge=0, le=99)
    steps: Tuple[str, ...] = ("risk_score",)


class WorkflowSettings(_Section):
    hold_for_review: bool = False
    min_review_reason_length: int = Field(3, ge=0)


class LoggingSettings(_Section):
    level: str = "INFO"
    format: str = "console"


class Settings(_Section):
    validation: ValidationRules = Field(default_factory=ValidationRules)
    policy: PolicyRules = Field(default_factory=PolicyRules)
    risk: RiskRules = Field(default_factory=RiskRules)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    chaos: ChaosSettings = Field(default_factory=ChaosSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def settings_from_dict(data: Optional[Dict[str, Any]], source: str = "settings") -> Settings:
    # an empty section in YAML parses as None
    data = {k: v for k, v in (data or {}).items() if v is not None}
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {source}: {e}") from e


def load_settings(path: Optional[Path] = None) -> Settings:
    if path is None and not DEFAULT_POLICY_PATH.exists():
        logger.warning("policy_file_missing", path=str(DEFAULT_POLICY_PATH))
        return Settings()
    policy_path = Path(path) if path is not None else DEFAULT_POLICY_PATH
    try:
        data = yaml.safe_load(policy_path.read_text())
    except OSError as e:
        raise ConfigError(f"Cannot read policy file {policy_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {policy_path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{policy_path} must contain a mapping at the top level")
    return settings_from_dict(data, source=str(policy_path))


def with_overrides(settings: Settings, **sections: Any) -> Settings:
    """Return a copy of ``settings`` with whole sections swapped out."""
    return settings.model_copy(update=sections)
