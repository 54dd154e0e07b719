"""Suppression rule compilation and matching (core domain).

Rules name message texts that should never be forwarded, such as range-test
counters or automated beacons. A rule can be narrowed to specific senders.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional

from core.node_ids import normalize_node_set


@dataclass(frozen=True)
class Rule:
    """Compiled suppression rule."""

    name: str
    keywords: List[str]
    regex_patterns: List[re.Pattern]
    from_nodes: frozenset[str]


@dataclass(frozen=True)
class RuleMatch:
    """A single rule match with a human-readable reason."""

    rule_name: str
    reason: str


def build_rules(rules_config: Iterable[dict]) -> List[Rule]:
    """Normalize rule configs and compile regex patterns.

    Keywords are lowercased and node ids normalized up front so per-message
    matching stays cheap.
    """

    compiled: List[Rule] = []
    for rule in rules_config:
        if not rule.get("enabled", True):
            continue
        compiled.append(
            Rule(
                name=rule["name"],
                keywords=[k.lower() for k in rule.get("keywords", [])],
                regex_patterns=[re.compile(p, re.IGNORECASE) for p in rule.get("regex", []) or []],
                from_nodes=normalize_node_set(rule.get("from_nodes", [])),
            )
        )
    return compiled


def match_rule(text: str, sender_hex: str, rules: Iterable[Rule]) -> Optional[RuleMatch]:
    """Return the first rule that suppresses ``text`` from ``sender_hex``.

    Matching logic:
    - A rule with ``from_nodes`` only applies to those senders.
    - Otherwise, any keyword OR any regex match is sufficient.
    """

    lowered = text.lower()
    for rule in rules:
        if rule.from_nodes and sender_hex not in rule.from_nodes:
            continue

        keyword_hits = [k for k in rule.keywords if k in lowered]
        regex_hits = [pattern.pattern for pattern in rule.regex_patterns if pattern.search(text)]
        if not keyword_hits and not regex_hits:
            continue

        reason_parts: List[str] = []
        if keyword_hits:
            reason_parts.append(f"keyword(s): {', '.join(sorted(set(keyword_hits)))}")
        if regex_hits:
            reason_parts.append(f"regex: {', '.join(sorted(set(regex_hits)))}")
        return RuleMatch(rule_name=rule.name, reason="; ".join(reason_parts))
    return None
