"""
Lexical style checks for finished scripts.

Violations are advisory: they are reported alongside the script and never
stop generation.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class StyleRuleset:
    prohibited_terms: tuple[str, ...] = ()
    mandatory_terms: tuple[str, ...] = ()
    minimum_mandatory_hits: int = 0
    discouraged_expansions: tuple[str, ...] = ()


@dataclass(frozen=True)
class StyleViolation:
    kind: str      # "prohibited_term" | "low_mandatory_usage" | "discouraged_expansion"
    term: str | None
    message: str

    def __str__(self) -> str:
        return self.message


# Uncontracted forms narration should contract
CONTRACTION_EXPANSIONS = ("it is", "do not", "will not", "can not", "they are")

WAR_ROOM_RULESET = StyleRuleset(
    prohibited_terms=(
        "brave", "valor", "heroic", "courage", "heartland",
        "destiny", "legend", "ancient", "mysterious", "whispers",
    ),
    mandatory_terms=(
        "meta", "debuff", "kill ratio", "disparity", "collision",
        "phalanx-depth", "reload-cycle", "spawn", "flank-efficiency", "morale-threshold",
    ),
    minimum_mandatory_hits=5,
    discouraged_expansions=CONTRACTION_EXPANSIONS,
)

# Plain documentary narration: no mandatory jargon, clichés flagged
DOCUMENTARY_RULESET = StyleRuleset(
    prohibited_terms=(
        "epic", "little did", "destiny awaited", "the world would never be the same",
        "smash cut", "cut to:", "fade in:",
    ),
    discouraged_expansions=CONTRACTION_EXPANSIONS,
)


def check_style_compliance(text: str | None, ruleset: StyleRuleset) -> list[StyleViolation]:
    """
    Check text against a ruleset. Matching is case-insensitive substring containment.

    Order of the returned list: prohibited terms (one each), then at most one
    low-usage violation for mandatory terms, then discouraged expansions (one each).
    """
    lowered = (text or "").lower()
    violations: list[StyleViolation] = []

    for term in ruleset.prohibited_terms:
        if term.lower() in lowered:
            violations.append(StyleViolation(
                kind="prohibited_term",
                term=term,
                message=f'Prohibited word detected: "{term}"',
            ))

    if ruleset.mandatory_terms:
        hits = sum(1 for term in ruleset.mandatory_terms if term.lower() in lowered)
        if hits < ruleset.minimum_mandatory_hits:
            violations.append(StyleViolation(
                kind="low_mandatory_usage",
                term=None,
                message=(
                    f"Low mandatory terminology usage: {hits}/{len(ruleset.mandatory_terms)} "
                    f"terms found (recommend {ruleset.minimum_mandatory_hits}+)"
                ),
            ))

    for expansion in ruleset.discouraged_expansions:
        if expansion.lower() in lowered:
            violations.append(StyleViolation(
                kind="discouraged_expansion",
                term=expansion,
                message=f'Should use contraction for: "{expansion}"',
            ))

    return violations
