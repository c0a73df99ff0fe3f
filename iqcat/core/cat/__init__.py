"""
CAT (Computerized Adaptive Testing) engine.

This module provides the item bank, 3PL model, ability estimation, item
selection, stopping rules, session state machine and scoring.
"""

from .ability_estimation import estimate_ability_eap, estimate_ability_mle
from .content_balancing import (
    apply_category_balance,
    category_caps,
    track_category_coverage,
)
from .engine import CATSessionManager
from .exposure_control import ExposureMonitor, apply_randomesque
from .irt_model import (
    ItemParameters,
    fisher_information_3pl,
    probability_3pl,
    standard_error,
    total_information,
)
from .item_bank import (
    Item,
    ItemBank,
    ItemBankValidationError,
    ItemContent,
    ItemUsage,
    load_item_bank,
)
from .item_selection import rank_candidates, select_next_item
from .score_conversion import (
    CategoryScore,
    IQResult,
    calculate_category_scores,
    classify_iq,
    theta_to_iq,
)
from .scoring import ProgressionStep, Result, build_result
from .session import (
    AdministeredItem,
    Response,
    Session,
    SessionConfig,
    SessionStateError,
)
from .stopping_rules import StoppingDecision, check_stopping_criteria

__all__ = [
    "CATSessionManager",
    "Session",
    "SessionConfig",
    "SessionStateError",
    "AdministeredItem",
    "Response",
    "Result",
    "ProgressionStep",
    "build_result",
    "Item",
    "ItemBank",
    "ItemBankValidationError",
    "ItemContent",
    "ItemUsage",
    "load_item_bank",
    "ItemParameters",
    "probability_3pl",
    "fisher_information_3pl",
    "total_information",
    "standard_error",
    "estimate_ability_eap",
    "estimate_ability_mle",
    "select_next_item",
    "rank_candidates",
    "track_category_coverage",
    "category_caps",
    "apply_category_balance",
    "apply_randomesque",
    "ExposureMonitor",
    "check_stopping_criteria",
    "StoppingDecision",
    "theta_to_iq",
    "classify_iq",
    "calculate_category_scores",
    "IQResult",
    "CategoryScore",
]
