"""
Immutable catalog of calibrated items.

An :class:`ItemBank` is built once per content locale and then shared,
read-only, by any number of sessions. Validation happens at load time and
fails fast: a malformed item is never clamped into range, since that would
silently corrupt its calibration.

Locale handling is a content-loading concern only. IRT parameters, category
and time limit are locale independent; the prompt, options and explanation
are taken from the requested locale, falling back per item to the fallback
locale when a translation is missing.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from libs.domain_types import ItemCategory
from iqcat.core.cat.irt_model import ItemParameters, validate_parameters

logger = logging.getLogger(__name__)

# Difficulty labels are an informational ordinal scale.
DIFFICULTY_LABEL_MIN = 1
DIFFICULTY_LABEL_MAX = 10

# Conventional guessing parameter for four-option multiple choice.
DEFAULT_GUESSING = 0.25


class ItemBankValidationError(Exception):
    """Raised when an item bank contains a malformed item."""

    def __init__(  # noqa: D107
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


@dataclass(frozen=True)
class ItemContent:
    """Presentation payload. Opaque to selection and estimation."""

    prompt: str
    options: Tuple[str, ...]
    correct_option: int
    explanation: Optional[str] = None
    time_limit_seconds: float = 60.0


@dataclass(frozen=True)
class ItemUsage:
    """Historical usage statistics, fed from a calibration store."""

    times_administered: int = 0
    times_correct: int = 0

    @property
    def p_value(self) -> Optional[float]:
        """Historical proportion correct, or None if never administered."""
        if self.times_administered == 0:
            return None
        return self.times_correct / self.times_administered


@dataclass(frozen=True)
class Item:
    """A calibrated item."""

    id: str
    category: ItemCategory
    difficulty_label: int
    a: float
    b: float
    c: float
    content: ItemContent
    usage: ItemUsage = field(default_factory=ItemUsage)

    @property
    def parameters(self) -> ItemParameters:
        return ItemParameters(self.a, self.b, self.c)

    @property
    def time_limit_seconds(self) -> float:
        return self.content.time_limit_seconds


def validate_item(item: Item) -> None:
    """
    Validate a single item.

    Raises:
        ItemBankValidationError: If any calibrated or structural field is invalid.
    """
    context = {"item_id": item.id}
    try:
        validate_parameters(item.a, item.b, item.c)
    except ValueError as e:
        raise ItemBankValidationError(
            "Invalid IRT parameters", original_error=e, context=context
        ) from e

    if not isinstance(item.category, ItemCategory):
        raise ItemBankValidationError(
            f"Unknown category {item.category!r}", context=context
        )
    if not (DIFFICULTY_LABEL_MIN <= item.difficulty_label <= DIFFICULTY_LABEL_MAX):
        raise ItemBankValidationError(
            f"Difficulty label must be in [{DIFFICULTY_LABEL_MIN}, "
            f"{DIFFICULTY_LABEL_MAX}], got {item.difficulty_label}",
            context=context,
        )
    options = item.content.options
    if len(options) < 2:
        raise ItemBankValidationError(
            f"Item needs at least two options, got {len(options)}", context=context
        )
    if not (0 <= item.content.correct_option < len(options)):
        raise ItemBankValidationError(
            f"Correct option index {item.content.correct_option} out of range "
            f"for {len(options)} options",
            context=context,
        )
    time_limit = item.content.time_limit_seconds
    if not math.isfinite(time_limit) or time_limit <= 0:
        raise ItemBankValidationError(
            f"Item time limit must be positive, got {time_limit}", context=context
        )
    usage = item.usage
    if usage.times_administered < 0 or not (
        0 <= usage.times_correct <= usage.times_administered
    ):
        raise ItemBankValidationError(
            f"Inconsistent usage statistics {usage}", context=context
        )


class ItemBank:
    """
    Read-only collection of validated items.

    Safe to share between sessions and threads: nothing on it mutates after
    construction.
    """

    def __init__(self, items: Iterable[Item], locale: str = "en"):
        items = tuple(items)
        by_id: Dict[str, Item] = {}
        for item in items:
            validate_item(item)
            if item.id in by_id:
                raise ItemBankValidationError(
                    "Duplicate item id", context={"item_id": item.id}
                )
            by_id[item.id] = item

        self._items: Tuple[Item, ...] = items
        self._by_id: Mapping[str, Item] = by_id
        self.locale = locale

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def __repr__(self) -> str:
        return f"ItemBank(locale={self.locale!r}, items={len(self._items)})"

    @property
    def items(self) -> Tuple[Item, ...]:
        return self._items

    def get(self, item_id: str) -> Item:
        """Return the item with ``item_id``; raises KeyError if absent."""
        return self._by_id[item_id]

    def categories(self) -> List[ItemCategory]:
        """Categories present in the bank, in enum order."""
        present = {item.category for item in self._items}
        return [c for c in ItemCategory if c in present]

    def by_category(self, category: ItemCategory) -> List[Item]:
        return [item for item in self._items if item.category == category]


def load_item_bank(
    records: Iterable[Mapping[str, Any]],
    locale: Optional[str] = None,
    fallback_locale: Optional[str] = None,
    settings=None,
) -> ItemBank:
    """
    Build an :class:`ItemBank` from plain calibration records.

    Each record is parsed with :class:`iqcat.schemas.cat.ItemRecord`. Content
    for ``locale`` is used when present; otherwise the ``fallback_locale``
    translation is used and a warning is logged.

    Args:
        records: Plain mappings (e.g. decoded JSON) describing items.
        locale: Content locale to load. Defaults to
            ``settings.CAT_DEFAULT_LOCALE``.
        fallback_locale: Locale used when an item lacks ``locale`` content.
            Defaults to ``settings.CAT_FALLBACK_LOCALE``.
        settings: :class:`~iqcat.core.config.Settings` to read the locale
            defaults from. Defaults to the module-level settings.

    Returns:
        A validated, immutable ItemBank.

    Raises:
        ItemBankValidationError: If a record is malformed or has no usable
            translation.
    """
    # Imported here: the schema module imports this one for type conversion.
    from iqcat.schemas.cat import ItemRecord

    if settings is None:
        from iqcat.core.config import settings
    if locale is None:
        locale = settings.CAT_DEFAULT_LOCALE
    if fallback_locale is None:
        fallback_locale = settings.CAT_FALLBACK_LOCALE

    items: List[Item] = []
    fallback_count = 0
    for index, raw in enumerate(records):
        try:
            record = ItemRecord.model_validate(raw)
        except ValidationError as e:
            raise ItemBankValidationError(
                "Malformed item record",
                original_error=e,
                context={"index": index, "item_id": raw.get("id")},
            ) from e

        translation = record.translations.get(locale)
        if translation is None:
            translation = record.translations.get(fallback_locale)
            if translation is None:
                raise ItemBankValidationError(
                    f"No content for locale '{locale}' or fallback "
                    f"'{fallback_locale}'",
                    context={"item_id": record.id},
                )
            fallback_count += 1
            logger.warning(
                f"Translation not found for item {record.id} in '{locale}', "
                f"using '{fallback_locale}'"
            )

        items.append(
            Item(
                id=record.id,
                category=record.category,
                difficulty_label=record.difficulty_label,
                a=record.a,
                b=record.b,
                c=record.c,
                content=ItemContent(
                    prompt=translation.prompt,
                    options=tuple(translation.options),
                    correct_option=record.correct_option,
                    explanation=translation.explanation,
                    time_limit_seconds=record.time_limit_seconds,
                ),
                usage=ItemUsage(
                    times_administered=record.times_administered,
                    times_correct=record.times_correct,
                ),
            )
        )

    bank = ItemBank(items, locale=locale)
    logger.info(
        f"Loaded item bank: {len(bank)} items, locale={locale}, "
        f"fallback translations={fallback_count}"
    )
    return bank
