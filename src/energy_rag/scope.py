"""Rule-based domain classifier run before any retrieval happens.

Rules are an ordered table of ``(predicate, decision)`` pairs over the
features of one query; the first rule whose predicate holds decides.
Term matching is a case-insensitive literal substring search, so overlapping
vocabulary entries ("nuclear", "nuclear power") each count when present.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from .schema import ScopeDecision

logger = logging.getLogger(__name__)

DOMAIN_TERMS: tuple[str, ...] = (
    # Nuclear fission
    "fission", "nuclear", "reactor", "uranium", "neutron", "chain reaction",
    "criticality", "radioactive", "radiation", "radioactivity", "decay",
    "control rod", "moderator", "coolant", "enrichment", "isotope", "nuclide",
    "binding energy", "mass defect", "chernobyl", "fukushima",
    "smr", "small modular reactor", "lwr", "light water reactor",
    "nuclear power", "nuclear plant", "nuclear energy", "nuclear fuel",
    "nuclear waste", "spent fuel", "actinide", "fission product",
    # Molten salt reactors
    "molten salt", "msr", "lithium fluoride", "beryllium", "breeder",
    "thorium", "graphite moderated", "passive safety", "fuel cycle", "freeze plug",
    # Fusion
    "fusion", "plasma", "tokamak", "iter", "jet tokamak", "nif", "inertial",
    "deuterium", "tritium", "lawson criterion", "confinement",
    "coulomb barrier", "cross section", "magnetic confinement",
    "inertial confinement", "star in a jar", "triple product",
    # Renewables
    "solar", "wind", "hydro", "geothermal", "photovoltaic", "pv cell",
    "turbine", "renewable", "betz limit", "penstock", "reservoir",
    "wind power", "wind turbine", "solar panel", "hydroelectric",
    "geothermal power", "energy source",
    # Physics concepts
    "carnot", "thermal efficiency", "kinetic energy", "potential energy",
    "e=mc", "e = mc", "mass energy", "electromagnetic", "faraday",
    "electricity", "power generation", "steam turbine", "heat engine",
    "energy density", "energy conversion", "heat exchanger",
    # Environmental and economic comparison
    "carbon emissions", "greenhouse gas", "carbon footprint", "carbon intensity",
    "fossil fuel", "coal", "natural gas", "oil power", "fossil",
    "lcoe", "levelised cost", "electricity generation cost",
    "lifecycle emissions", "deaths per twh", "air pollution",
    "pm2.5", "nox", "co2", "acid rain",
)

HARD_REFUSAL_TERMS: tuple[str, ...] = (
    "recipe", "cooking", "food", "restaurant",
    "sports", "football", "basketball", "soccer",
    "music", "song", "artist", "album",
    "celebrity", "actor", "actress",
    "movie", "film", "tv show", "netflix",
    "fashion", "clothing", "outfit",
    "dating", "relationship", "love",
    "social media", "instagram", "twitter", "tiktok", "facebook",
    "cryptocurrency", "bitcoin", "ethereum", "nft",
    "stock market", "trading", "forex",
    "medical diagnosis", "prescription", "drug dosage",
    "legal advice", "lawsuit", "crime",
    "religion", "prayer", "scripture",
    "homework help for english", "essay writing",
    "translate this text", "poetry",
)

# Questions about the assistant itself.
META_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"what (can|do) you (do|know|cover|answer|help)", re.I),
    re.compile(r"what (topics|subjects|areas) do you cover", re.I),
    re.compile(r"who are you", re.I),
    re.compile(r"how (does this|can i use this) work", re.I),
    re.compile(r"tell me about (this|yourself|your)", re.I),
    re.compile(r"help me", re.I),
)

SHORT_QUERY_MAX_WORDS = 4
LONG_QUERY_MIN_WORDS = 9


@dataclass(slots=True)
class QueryFeatures:
    """Everything the rule table looks at for one query."""

    text: str
    is_meta: bool = False
    hard_refusal: bool = False
    matched: list[str] = field(default_factory=list)
    word_count: int = 0

    @property
    def score(self) -> int:
        return len(self.matched)


def extract_features(query: Any) -> QueryFeatures:
    if not isinstance(query, str):
        return QueryFeatures(text="")
    lower = query.lower().strip()
    if not lower:
        return QueryFeatures(text="")
    return QueryFeatures(
        text=lower,
        is_meta=any(pattern.search(lower) for pattern in META_PATTERNS),
        hard_refusal=any(term in lower for term in HARD_REFUSAL_TERMS),
        matched=[term for term in DOMAIN_TERMS if term in lower],
        word_count=len(lower.split()),
    )


@dataclass(frozen=True, slots=True)
class ScopeRule:
    name: str
    applies: Callable[[QueryFeatures], bool]
    decide: Callable[[QueryFeatures], ScopeDecision]


def _fixed(in_scope: bool, confidence: str, reason: str) -> Callable[[QueryFeatures], ScopeDecision]:
    return lambda features: ScopeDecision(in_scope=in_scope, confidence=confidence, reason=reason)


def _domain_match(confidence: str) -> Callable[[QueryFeatures], ScopeDecision]:
    return lambda features: ScopeDecision(
        in_scope=True,
        confidence=confidence,
        reason="domain_match",
        matched=list(features.matched),
    )


# Precedence matters: meta questions pass before any refusal check, and the
# short-query leniency fires even with zero domain terms.
RULES: tuple[ScopeRule, ...] = (
    ScopeRule("empty_query", lambda f: not f.text, _fixed(False, "high", "empty_query")),
    ScopeRule("meta_query", lambda f: f.is_meta, _fixed(True, "high", "meta_query")),
    ScopeRule("strong_domain_match", lambda f: f.score >= 2, _domain_match("high")),
    ScopeRule(
        "single_domain_match",
        lambda f: f.score == 1 and not f.hard_refusal,
        _domain_match("medium"),
    ),
    ScopeRule(
        "hard_refusal",
        lambda f: f.hard_refusal and f.score == 0,
        _fixed(False, "high", "hard_refusal"),
    ),
    ScopeRule(
        "short_query",
        lambda f: f.word_count <= SHORT_QUERY_MAX_WORDS,
        _fixed(True, "low", "short_query"),
    ),
    ScopeRule(
        "no_domain_keywords",
        lambda f: f.score == 0 and f.word_count >= LONG_QUERY_MIN_WORDS,
        _fixed(False, "medium", "no_domain_keywords"),
    ),
    ScopeRule("uncertain", lambda f: True, _fixed(True, "low", "uncertain")),
)


class ScopeGuard:
    """Evaluates an ordered rule table top-to-bottom; the first match wins."""

    def __init__(self, rules: tuple[ScopeRule, ...] = RULES) -> None:
        self.rules = rules

    def check_scope(self, query: Any) -> ScopeDecision:
        """Classify a query as in or out of the energy physics domain.

        Never raises: non-string and blank input map to ``empty_query``.

        Args:
            query: Raw user query.

        Returns:
            The decision of the first rule whose predicate holds.
        """
        features = extract_features(query)
        for rule in self.rules:
            if rule.applies(features):
                decision = rule.decide(features)
                logger.debug(
                    "Scope %s: in_scope=%s confidence=%s matched=%s",
                    rule.name,
                    decision.in_scope,
                    decision.confidence,
                    features.matched,
                )
                return decision
        return ScopeDecision(in_scope=True, confidence="low", reason="uncertain")


_default_guard = ScopeGuard()


def check_scope(query: Any) -> ScopeDecision:
    return _default_guard.check_scope(query)
