"""
Pydantic schemas for item, session and result records.

Records are plain structured data: no behavior, no handles. They cross
storage and network boundaries unchanged and convert to and from the engine's
frozen dataclasses with the helpers at the bottom of this module.
"""
import dataclasses
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from libs.domain_types import IQClassification, ItemCategory, SessionStatus, StopReason
from iqcat.core.cat.item_bank import DEFAULT_GUESSING, Item
from iqcat.core.cat.scoring import Result
from iqcat.core.cat.session import (
    AdministeredItem,
    Response,
    Session,
    SessionConfig,
)

# Disabled limits are stored as infinity; keep them as JSON constants.
_RECORD_CONFIG = ConfigDict(ser_json_inf_nan="constants")


class ItemTranslation(BaseModel):
    """Locale-specific presentation content of an item."""

    prompt: str = Field(..., description="Item prompt text")
    options: List[str] = Field(..., description="Answer options, in display order")
    explanation: Optional[str] = Field(
        None, description="Explanation of the correct answer"
    )


class ItemRecord(BaseModel):
    """
    Calibration record of one item.

    IRT parameters are checked by the item bank loader, not here, so that a
    malformed calibration surfaces as an item bank validation error.
    """

    id: str = Field(..., description="Opaque item identifier")
    category: ItemCategory
    difficulty_label: int = Field(..., description="Ordinal difficulty 1-10")
    a: float = Field(..., description="Discrimination")
    b: float = Field(..., description="Difficulty")
    c: float = Field(DEFAULT_GUESSING, description="Pseudo-guessing")
    correct_option: int = Field(..., description="Index of the correct option")
    time_limit_seconds: float = 60.0
    times_administered: int = 0
    times_correct: int = 0
    translations: Dict[str, ItemTranslation] = Field(
        ..., description="Content keyed by locale"
    )


class SessionConfigRecord(BaseModel):
    model_config = _RECORD_CONFIG

    estimation_method: Literal["eap", "mle"]
    prior_mean: float
    prior_sd: float
    theta_min: float
    theta_max: float
    se_threshold: float
    min_items: int
    max_items: int
    time_limit_seconds: float
    item_time_limit_seconds: float
    category_targets: Dict[ItemCategory, float]
    randomesque_k: int
    confidence_level: float
    mle_step_size: float
    mle_max_iterations: int
    mle_tolerance: float


class AdministeredItemRecord(BaseModel):
    item_id: str
    category: ItemCategory
    difficulty_label: int
    a: float
    b: float
    c: float
    correct_option: int
    option_count: int
    time_limit_seconds: float
    theta_at_selection: float


class ResponseRecord(BaseModel):
    item_id: str
    chosen_option: Optional[int] = None
    is_correct: bool
    latency_seconds: float
    theta_at_selection: float
    timed_out: bool = False


class SessionRecord(BaseModel):
    """Serialized form of a Session."""

    model_config = _RECORD_CONFIG

    session_id: str
    config: SessionConfigRecord
    status: SessionStatus
    theta: float
    se: float
    administered: List[AdministeredItemRecord] = []
    responses: List[ResponseRecord] = []
    theta_history: List[float] = []
    se_history: List[float] = []
    elapsed_seconds: float = 0.0
    stop_reason: Optional[StopReason] = None


class CategoryScoreRecord(BaseModel):
    category: ItemCategory
    items_administered: int
    correct_count: int
    accuracy: Optional[float] = None
    mean_latency_seconds: Optional[float] = None
    mean_difficulty_label: Optional[float] = None


class ReliabilityRecord(BaseModel):
    cronbachs_alpha: Optional[float] = None
    num_pairs: int
    marginal_reliability: float
    precision: float
    interpretation: str


class ProgressionStepRecord(BaseModel):
    index: int
    item_id: str
    category: ItemCategory
    is_correct: bool
    timed_out: bool
    latency_seconds: float
    theta_at_selection: float
    difficulty: float
    difficulty_label: int
    information: float
    theta: float
    se: float


class ResultRecord(BaseModel):
    """Serialized form of a Result, the contract consumed by reporting."""

    session_id: str
    status: SessionStatus
    stop_reason: Optional[StopReason] = None
    theta: float
    se: float
    iq_score: int
    percentile: float
    ci_lower: int
    ci_upper: int
    confidence_level: float
    iq_se: float
    classification: IQClassification
    category_scores: Dict[ItemCategory, CategoryScoreRecord]
    reliability: ReliabilityRecord
    progression: List[ProgressionStepRecord]
    timing: Dict[str, Any]
    items_administered: int
    items_answered: int
    items_unanswered: int
    correct_count: int
    elapsed_seconds: float


def item_to_record(item: Item, locale: str) -> ItemRecord:
    """Record of an item with its content stored under ``locale``."""
    return ItemRecord(
        id=item.id,
        category=item.category,
        difficulty_label=item.difficulty_label,
        a=item.a,
        b=item.b,
        c=item.c,
        correct_option=item.content.correct_option,
        time_limit_seconds=item.content.time_limit_seconds,
        times_administered=item.usage.times_administered,
        times_correct=item.usage.times_correct,
        translations={
            locale: ItemTranslation(
                prompt=item.content.prompt,
                options=list(item.content.options),
                explanation=item.content.explanation,
            )
        },
    )


def session_to_record(session: Session) -> SessionRecord:
    return SessionRecord.model_validate(dataclasses.asdict(session))


def session_from_record(record: SessionRecord) -> Session:
    """Rebuild a Session value. Accepts a SessionRecord or a plain mapping."""
    if not isinstance(record, SessionRecord):
        record = SessionRecord.model_validate(record)

    return Session(
        session_id=record.session_id,
        config=SessionConfig(**record.config.model_dump()),
        status=record.status,
        theta=record.theta,
        se=record.se,
        administered=tuple(
            AdministeredItem(**item.model_dump()) for item in record.administered
        ),
        responses=tuple(
            Response(**response.model_dump()) for response in record.responses
        ),
        theta_history=tuple(record.theta_history),
        se_history=tuple(record.se_history),
        elapsed_seconds=record.elapsed_seconds,
        stop_reason=record.stop_reason,
    )


def result_to_record(result: Result) -> ResultRecord:
    return ResultRecord.model_validate(dataclasses.asdict(result))
