"""
Pytest configuration and shared fixtures for testing.
"""
import sys
from pathlib import Path

# Add project root to path so libs/ is importable without an install
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from typing import Any, Dict, List  # noqa: E402

import pytest  # noqa: E402

from libs.domain_types import ItemCategory  # noqa: E402
from iqcat.core.cat.item_bank import (  # noqa: E402
    Item,
    ItemBank,
    ItemContent,
    ItemUsage,
)
from iqcat.core.cat.session import SessionConfig  # noqa: E402
from iqcat.core.cat.simulation import generate_item_bank  # noqa: E402

# The five-item bank of the end-to-end scenario: a=1, c=0.25, b from -1 to 1
SCENARIO_DIFFICULTIES = [-1.0, -0.5, 0.0, 0.5, 1.0]


def make_item(
    item_id: str = "q1",
    category: ItemCategory = ItemCategory.PATTERN_RECOGNITION,
    a: float = 1.0,
    b: float = 0.0,
    c: float = 0.25,
    difficulty_label: int = 5,
    correct_option: int = 0,
    time_limit_seconds: float = 60.0,
    times_administered: int = 0,
    times_correct: int = 0,
) -> Item:
    """Build a valid four-option item with overridable fields."""
    return Item(
        id=item_id,
        category=category,
        difficulty_label=difficulty_label,
        a=a,
        b=b,
        c=c,
        content=ItemContent(
            prompt=f"Prompt for {item_id}",
            options=("A", "B", "C", "D"),
            correct_option=correct_option,
            time_limit_seconds=time_limit_seconds,
        ),
        usage=ItemUsage(
            times_administered=times_administered, times_correct=times_correct
        ),
    )


def make_item_record(item_id: str = "q1", **overrides: Any) -> Dict[str, Any]:
    """Plain calibration record as it would arrive from JSON."""
    record: Dict[str, Any] = {
        "id": item_id,
        "category": "pattern_recognition",
        "difficulty_label": 5,
        "a": 1.0,
        "b": 0.0,
        "c": 0.25,
        "correct_option": 1,
        "time_limit_seconds": 45.0,
        "times_administered": 10,
        "times_correct": 6,
        "translations": {
            "en": {
                "prompt": "Which shape comes next?",
                "options": ["Circle", "Square", "Triangle", "Star"],
                "explanation": "The sequence alternates.",
            },
            "vi": {
                "prompt": "Hinh nao tiep theo?",
                "options": ["Tron", "Vuong", "Tam giac", "Sao"],
                "explanation": None,
            },
        },
    }
    record.update(overrides)
    return record


@pytest.fixture
def scenario_bank() -> ItemBank:
    """Five items, one per category, b = -1.0 .. 1.0."""
    categories = list(ItemCategory)
    return ItemBank(
        [
            make_item(
                item_id=f"s{i + 1}",
                category=categories[i],
                b=b,
                difficulty_label=i * 2 + 2,
            )
            for i, b in enumerate(SCENARIO_DIFFICULTIES)
        ]
    )


@pytest.fixture
def single_category_bank() -> ItemBank:
    """Twenty pattern-recognition items spread over b in [-2, 2]."""
    items: List[Item] = [
        make_item(item_id=f"p{i:02d}", b=-2.0 + i * 0.2, difficulty_label=5)
        for i in range(21)
    ]
    return ItemBank(items)


@pytest.fixture
def bank_50() -> ItemBank:
    """Synthetic 3PL bank of 50 items, 10 per category."""
    return generate_item_bank(n_items_per_category=10, seed=7)


@pytest.fixture
def unconstrained_config() -> SessionConfig:
    """Config without category targets, default limits."""
    return SessionConfig(category_targets={})
