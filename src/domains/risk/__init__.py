"""Zero-trust transaction risk domain."""

from .catalog import FACTOR_CATALOG, FactorDefinition, Tier, build_catalog
from .config import RiskConfig, default_config
from .engine import InvalidAmountError, RiskEngine
from .evaluator import evaluate_factors
from .justification import JustificationDispatcher, TemplateJustificationGenerator
from .models import (
    Decision,
    PaymentRiskRequest,
    RiskAssessment,
    RiskCheckResult,
    RiskFactor,
    TransactionContext,
)
from .reducer import fail_safe_assessment, reduce_factors
from .sink import AssessmentSink

__all__ = [
    "FACTOR_CATALOG",
    "AssessmentSink",
    "Decision",
    "FactorDefinition",
    "InvalidAmountError",
    "JustificationDispatcher",
    "PaymentRiskRequest",
    "RiskAssessment",
    "RiskCheckResult",
    "RiskConfig",
    "RiskEngine",
    "RiskFactor",
    "TemplateJustificationGenerator",
    "Tier",
    "TransactionContext",
    "build_catalog",
    "default_config",
    "evaluate_factors",
    "fail_safe_assessment",
    "reduce_factors",
]
