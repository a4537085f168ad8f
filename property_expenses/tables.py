"""Loading of the static YAML rule tables shipped in ``rules/``."""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Pattern, Tuple

import yaml

from .errors import RulesError

logger = logging.getLogger(__name__)

RULES_DIR = Path(__file__).parent / 'rules'

MERCHANT_PATTERNS_FILE = 'merchant_patterns.yml'
RECEIPT_PATTERNS_FILE = 'receipt_patterns.yml'
TAX_RULES_FILE = 'tax_rules.yml'
IRS_CATEGORIES_FILE = 'irs_categories.yml'
ALLOCATION_RULES_FILE = 'allocation_rules.yml'


def load_yaml(path: Path) -> Any:
    """Read a YAML rule file, raising RulesError when it cannot be used."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load rule table {path}: {e}")
        raise RulesError(f"Cannot load rule table {path}: {e}")

    if data is None:
        raise RulesError(f"Rule table {path} is empty")
    logger.debug(f"Loaded rule table {path.name}")
    return data


def _resolve(rules_dir: Optional[Path], filename: str) -> Path:
    return Path(rules_dir or RULES_DIR) / filename


def _freeze(record: dict) -> Mapping[str, Any]:
    """Read-only view of a rule record with list values turned into tuples."""
    return MappingProxyType({
        key: tuple(value) if isinstance(value, list) else value
        for key, value in record.items()
    })


@dataclass(frozen=True)
class ReceiptPatternTable:
    """Regex patterns per category plus the flat merchant hint map."""
    patterns: Tuple[Tuple[str, Tuple[Pattern, ...]], ...]
    merchant_hints: Mapping[str, str]


@lru_cache(maxsize=None)
def merchant_patterns(rules_dir: Optional[Path] = None) -> Tuple[Tuple[str, str, Tuple[str, ...]], ...]:
    """
    Load the merchant keyword table.

    Returns:
        Tuple of (category_id, subcategory_id, keywords) in file order
    """
    data = load_yaml(_resolve(rules_dir, MERCHANT_PATTERNS_FILE))
    if not isinstance(data, dict):
        raise RulesError("Merchant pattern table must be a mapping of categories")

    rows = []
    for category_id, subcategories in data.items():
        if not isinstance(subcategories, dict):
            raise RulesError(f"Category '{category_id}' must map subcategories to keyword lists")
        for subcategory_id, keywords in subcategories.items():
            rows.append((
                str(category_id),
                str(subcategory_id),
                tuple(str(k).lower() for k in keywords or []),
            ))

    logger.info(f"Loaded {len(rows)} merchant keyword groups")
    return tuple(rows)


@lru_cache(maxsize=None)
def receipt_patterns(rules_dir: Optional[Path] = None) -> ReceiptPatternTable:
    """Load and compile the receipt regex table and merchant hint map."""
    data = load_yaml(_resolve(rules_dir, RECEIPT_PATTERNS_FILE))

    compiled = []
    for category_id, patterns in (data.get('patterns') or {}).items():
        try:
            compiled.append((
                str(category_id),
                tuple(re.compile(p, re.IGNORECASE) for p in patterns or []),
            ))
        except re.error as e:
            raise RulesError(f"Invalid receipt pattern for '{category_id}': {e}")

    hints = {str(k).lower(): str(v) for k, v in (data.get('merchant_hints') or {}).items()}
    return ReceiptPatternTable(patterns=tuple(compiled), merchant_hints=MappingProxyType(hints))


@lru_cache(maxsize=None)
def tax_rules(rules_dir: Optional[Path] = None) -> Tuple[Mapping[str, Any], ...]:
    """Load the ordered tax rule table as read-only mappings."""
    data = load_yaml(_resolve(rules_dir, TAX_RULES_FILE))
    if not isinstance(data, list):
        raise RulesError("Tax rule table must be a list")
    return tuple(_freeze(rule) for rule in data)


@lru_cache(maxsize=None)
def irs_categories(rules_dir: Optional[Path] = None) -> Mapping[str, Mapping[str, Any]]:
    data = load_yaml(_resolve(rules_dir, IRS_CATEGORIES_FILE))
    return MappingProxyType({key: _freeze(value) for key, value in data.items()})


@lru_cache(maxsize=None)
def allocation_rules(rules_dir: Optional[Path] = None) -> Tuple[Mapping[str, Any], ...]:
    data = load_yaml(_resolve(rules_dir, ALLOCATION_RULES_FILE))
    if not isinstance(data, list):
        raise RulesError("Allocation rule table must be a list")
    return tuple(_freeze(rule) for rule in data)
