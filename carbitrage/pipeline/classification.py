"""
Candidate text classification — ordered, data-driven rule tables.

Each attribute category (series, engine family, cab type, body type, badge)
has a table of (pattern → value) rules. The first rule in TABLE order whose
pattern matches the upper-cased text wins, so "GDJ79 ... LC300" resolves to
the same series every time no matter where each token sits in the text.
"""
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern

import yaml

logger = logging.getLogger('pipeline.classification')

CATEGORIES = ('series_family', 'engine_family', 'cab_type', 'body_type', 'badge')


@dataclass(frozen=True)
class Rule:
    pattern: Pattern
    value: str


# ── Rule tables (YAML with hardcoded fallback) ───────────────────────────────

_rule_tables = None


def _default_rules():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'series_family': [
            {'pattern': r'LC79|79 SERIES|GDJ79|VDJ79', 'value': 'LC70'},
            {'pattern': r'LC300|300 SERIES', 'value': 'LC300'},
            {'pattern': r'LC200|200 SERIES', 'value': 'LC200'},
            {'pattern': r'LC76|76 SERIES', 'value': 'LC70'},
        ],
        'engine_family': [
            {'pattern': r'VDJ|V8 DIESEL|4\.5L? DIESEL', 'value': 'V8_DIESEL'},
            {'pattern': r'GDJ|2\.8L|2\.8 DIESEL|4 ?CYL DIESEL', 'value': 'I4_DIESEL'},
            {'pattern': r'V6 PETROL|4\.0L PETROL|GRJ', 'value': 'V6_PETROL'},
            {'pattern': r'TWIN TURBO|3\.3L? DIESEL', 'value': 'V6_DIESEL_TT'},
        ],
        'cab_type': [
            {'pattern': r'DUAL CAB|DOUBLE CAB|D/CAB', 'value': 'DUAL'},
            {'pattern': r'SINGLE CAB|S/CAB', 'value': 'SINGLE'},
            {'pattern': r'EXTRA CAB|KING CAB|SPACE CAB', 'value': 'EXTRA'},
        ],
        'body_type': [
            {'pattern': r'CAB CHASSIS|\bTRAY\b|\bUTE\b', 'value': 'CAB_CHASSIS'},
            {'pattern': r'\bWAGON\b|\bSUV\b', 'value': 'WAGON'},
        ],
        'badge': [
            {'pattern': rf'\b{badge}\b', 'value': badge}
            for badge in ('WORKMATE', 'GXL', 'GX', 'VX', 'SAHARA', 'SR5', 'SR',
                          'WILDTRAK', 'XLT', 'ROGUE', 'RUGGED')
        ],
    }


def compile_rules(raw: Dict) -> Dict[str, List[Rule]]:
    """Compile raw {category: [{pattern, value}, ...]} into Rule tables."""
    tables = {}
    for category in CATEGORIES:
        tables[category] = [
            Rule(pattern=re.compile(entry['pattern']), value=str(entry['value']))
            for entry in raw.get(category) or []
        ]
    return tables


def load_rule_tables() -> Dict[str, List[Rule]]:
    """Load + compile rule tables from YAML, with in-memory cache and hardcoded fallback."""
    global _rule_tables
    if _rule_tables is not None:
        return _rule_tables

    config_path = os.path.join(os.path.dirname(__file__), 'classification_rules.yaml')
    try:
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)
        _rule_tables = compile_rules(raw)
        logger.info("Classification rules loaded from YAML (version=%s)", raw.get('version', '?'))
    except Exception as e:
        logger.warning("Classification rules YAML not loaded (%s), using defaults", e)
        _rule_tables = compile_rules(_default_rules())

    return _rule_tables


# ── Classification ───────────────────────────────────────────────────────────

def first_match(text_upper: str, rules: List[Rule]) -> Optional[str]:
    for rule in rules:
        if rule.pattern.search(text_upper):
            return rule.value
    return None


def classify_text(text: str, tables: Optional[Dict[str, List[Rule]]] = None) -> Dict[str, Optional[str]]:
    """
    Classify candidate text into every attribute category.

    Returns {category: value or None}; unmatched categories stay None.
    """
    tables = tables if tables is not None else load_rule_tables()
    upper = (text or '').upper()
    return {category: first_match(upper, tables.get(category, [])) for category in CATEGORIES}
