"""Deterministic score-to-verdict derivation.

The model's free-text verdict is never the source of truth. A labeled score
("IDEA STRENGTH SCORE: 73%") is parsed out of the evaluation text and mapped
through ONE band table shared by every producer and consumer of verdicts:
the evaluate handler, the chat assistant, and anything re-deriving a verdict
from a stored score. Only when no score can be found does a phrase-matching
fallback run, and it defaults to the most conservative category.

Default bands:
    70-100 -> BUILD   ("BUILD")
    40-69  -> NARROW  ("BUILD ONLY IF NARROWED")
    0-39   -> KILL    ("DO NOT BUILD")

Example:
    >>> outcome = derive_outcome("VERDICT: DO NOT BUILD\\nIDEA STRENGTH SCORE: 90%")
    >>> outcome.score, outcome.verdict
    (90, <VerdictCategory.BUILD: 'build'>)

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100


class VerdictCategory(str, Enum):
    """Verdict categories, most to least favourable."""

    BUILD = "build"
    NARROW = "narrow"
    RETHINK = "rethink"
    OPTIONAL = "optional"
    KILL = "kill"

    @property
    def label(self) -> str:
        """Wire label returned by the evaluate endpoint."""
        return VERDICT_LABELS[self]

    @property
    def display_label(self) -> str:
        """Label shown on the verdict card."""
        return DISPLAY_LABELS[self]


VERDICT_LABELS = {
    VerdictCategory.BUILD: "BUILD",
    VerdictCategory.NARROW: "BUILD ONLY IF NARROWED",
    VerdictCategory.RETHINK: "RETHINK",
    VerdictCategory.OPTIONAL: "OPTIONAL",
    VerdictCategory.KILL: "DO NOT BUILD",
}

DISPLAY_LABELS = {
    **VERDICT_LABELS,
    VerdictCategory.BUILD: "PROCEED TO MVP",
}

CONSERVATIVE_DEFAULT = VerdictCategory.KILL


# ================================================================
# Band Table
# ================================================================


@dataclass(frozen=True)
class VerdictBand:
    """Inclusive score range mapped to one category."""

    lower: int
    upper: int
    category: VerdictCategory

    def __contains__(self, score: int) -> bool:
        return self.lower <= score <= self.upper


class VerdictBandTable:
    """Ordered, contiguous, exhaustive mapping of [0, 100] onto categories.

    Construction fails with ``ValueError`` unless every integer score maps to
    exactly one band: no gaps, no overlaps, nothing outside [0, 100].
    """

    def __init__(self, bands: Iterable[VerdictBand]):
        ordered = sorted(bands, key=lambda b: b.lower)
        if not ordered:
            raise ValueError("Band table must contain at least one band")

        expected_lower = MIN_SCORE
        for band in ordered:
            if band.lower > band.upper:
                raise ValueError(f"Band {band.lower}-{band.upper} is empty")
            if band.lower != expected_lower:
                raise ValueError(
                    f"Bands must be contiguous: expected a band starting at "
                    f"{expected_lower}, got {band.lower}"
                )
            expected_lower = band.upper + 1

        if ordered[-1].upper != MAX_SCORE:
            raise ValueError(f"Bands must end at {MAX_SCORE}, not {ordered[-1].upper}")

        self._bands: tuple[VerdictBand, ...] = tuple(ordered)

    @classmethod
    def from_thresholds(
        cls, thresholds: Sequence[tuple[int, VerdictCategory]]
    ) -> VerdictBandTable:
        """Build a table from ``(minimum score, category)`` pairs.

        Example:
            >>> VerdictBandTable.from_thresholds(
            ...     [(70, VerdictCategory.BUILD), (40, VerdictCategory.NARROW), (0, VerdictCategory.KILL)]
            ... )
        """
        ordered = sorted(thresholds, key=lambda t: t[0], reverse=True)
        bands = []
        upper = MAX_SCORE
        for lower, category in ordered:
            bands.append(VerdictBand(lower=lower, upper=upper, category=category))
            upper = lower - 1
        return cls(bands)

    @classmethod
    def parse(cls, spec: str) -> VerdictBandTable:
        """Parse ``"70:BUILD,40:NARROW,0:KILL"`` into a table."""
        thresholds = []
        for item in spec.split(","):
            item = item.strip()
            if not item:
                continue
            try:
                lower, name = item.split(":", 1)
                thresholds.append((int(lower), VerdictCategory[name.strip().upper()]))
            except (ValueError, KeyError) as e:
                raise ValueError(f"Invalid band entry {item!r} in {spec!r}") from e
        return cls.from_thresholds(thresholds)

    def categorize(self, score: int) -> VerdictCategory:
        """Map a score in [0, 100] to its category."""
        for band in self._bands:
            if score in band:
                return band.category
        raise ValueError(f"Score {score} is outside [{MIN_SCORE}, {MAX_SCORE}]")

    def band_for(self, category: VerdictCategory) -> VerdictBand | None:
        """Return the highest band for ``category``, if the table has one."""
        for band in reversed(self._bands):
            if band.category == category:
                return band
        return None

    def describe(self) -> str:
        return ", ".join(
            f"{b.lower}-{b.upper} {b.category.name}" for b in reversed(self._bands)
        )

    def __iter__(self) -> Iterator[VerdictBand]:
        return iter(self._bands)

    def __len__(self) -> int:
        return len(self._bands)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, VerdictBandTable) and self._bands == other._bands

    def __repr__(self) -> str:
        return f"VerdictBandTable({self.describe()})"


DEFAULT_BAND_TABLE = VerdictBandTable.from_thresholds(
    [
        (70, VerdictCategory.BUILD),
        (40, VerdictCategory.NARROW),
        (0, VerdictCategory.KILL),
    ]
)


# ================================================================
# Extraction
# ================================================================

# Markdown emphasis and brackets the model sometimes wraps values in
_DECOR = r"[\s*_\[\]]*"

# Priority order: canonical label first, legacy/loose variants after
SCORE_PATTERNS = (
    re.compile(rf"IDEA\s+STRENGTH\s+SCORE{_DECOR}:?{_DECOR}(\d{{1,3}})(?!\d)", re.IGNORECASE),
    re.compile(rf"IDEA\s*STRENGTH{_DECOR}:?{_DECOR}(\d{{1,3}})(?!\d)\s*%", re.IGNORECASE),
    re.compile(rf"\bSCORE{_DECOR}:{_DECOR}(\d{{1,3}})(?!\d)", re.IGNORECASE),
    re.compile(r"(?<!\d)(\d{1,3})\s*%\s*(?:IDEA\s*)?STRENGTH", re.IGNORECASE),
)

_LABELED_LINE = r"(?im)^[\s*_#>-]*{label}[\s*_]*:[\s*_]*(.+?)[\s*_]*$"


def extract_score(raw_text: str | None) -> int | None:
    """Return the first labeled score in [0, 100], or None."""
    if not raw_text:
        return None
    for pattern in SCORE_PATTERNS:
        for match in pattern.finditer(raw_text):
            score = int(match.group(1))
            if MIN_SCORE <= score <= MAX_SCORE:
                return score
    return None


def extract_labeled_field(raw_text: str | None, label: str, max_length: int = 100) -> str | None:
    """Return the value of a ``LABEL: value`` line, if present."""
    if not raw_text:
        return None
    pattern = _LABELED_LINE.format(label=r"\s+".join(map(re.escape, label.split())))
    match = re.search(pattern, raw_text)
    if not match:
        return None
    value = match.group(1).strip().strip("[]").strip()
    return value[:max_length] or None


def extract_verdict_phrase(raw_text: str | None) -> str | None:
    """Return the text of the model's ``VERDICT:`` line, if any."""
    return extract_labeled_field(raw_text, "VERDICT", max_length=200)


# ================================================================
# Phrase Fallback
# ================================================================

# Most specific first: "DO NOT BUILD" must win before anything sees "BUILD"
_PHRASE_MATCHERS: tuple[tuple[VerdictCategory, re.Pattern[str]], ...] = (
    (VerdictCategory.KILL, re.compile(r"\bDO(?:\s+NOT|N'?T)\s+(?:BUILD|PROCEED)\b")),
    (VerdictCategory.KILL, re.compile(r"\bKILL\b")),
    (VerdictCategory.NARROW, re.compile(r"\bBUILD\s+ONLY\s+IF\s+NARROWED\b")),
    (VerdictCategory.NARROW, re.compile(r"\bNARROW")),
    (VerdictCategory.RETHINK, re.compile(r"\bRETHINK\b")),
    (VerdictCategory.OPTIONAL, re.compile(r"\bOPTIONAL\b")),
    (VerdictCategory.BUILD, re.compile(r"\bPROCEED\s+TO\s+MVP\b")),
)
_BARE_BUILD = re.compile(r"\bBUILD\b")

# Whole-evaluation scan: exact uppercase labels only, so prose never matches
_FULL_TEXT_LABELS: tuple[tuple[VerdictCategory, re.Pattern[str]], ...] = (
    (VerdictCategory.KILL, re.compile(r"\bDO NOT BUILD\b")),
    (VerdictCategory.NARROW, re.compile(r"\bBUILD ONLY IF NARROWED\b")),
    (VerdictCategory.OPTIONAL, re.compile(r"\bOPTIONAL\b")),
)


def _normalize_phrase(text: str) -> str:
    text = text.replace("’", "'").replace("*", " ").replace("_", " ")
    return " ".join(text.upper().split())


def parse_raw_verdict(text: str | None) -> VerdictCategory:
    """Classify the model's verdict phrase.

    Args:
        text: The wording of a ``VERDICT:`` line or a client-sent verdict type.

    Returns:
        The first matching category, or KILL when nothing matches.
    """
    if not text:
        return CONSERVATIVE_DEFAULT
    normalized = _normalize_phrase(text)
    for category, pattern in _PHRASE_MATCHERS:
        if pattern.search(normalized):
            return category
    if _BARE_BUILD.search(normalized):
        return VerdictCategory.BUILD
    return CONSERVATIVE_DEFAULT


def scan_verdict_labels(raw_text: str | None) -> VerdictCategory:
    """Look for an exact verdict label anywhere in a whole evaluation.

    Used only when the output has neither a score nor a ``VERDICT:`` line.
    Matching is case-sensitive on the full labels; anything else is KILL.
    """
    if not raw_text:
        return CONSERVATIVE_DEFAULT
    for category, pattern in _FULL_TEXT_LABELS:
        if pattern.search(raw_text):
            return category
    return CONSERVATIVE_DEFAULT


# ================================================================
# Derivation
# ================================================================


def derive_verdict(
    score: int | None,
    raw_verdict_text: str | None,
    table: VerdictBandTable | None = None,
) -> VerdictCategory:
    """Derive the authoritative verdict. A valid score always wins.

    Never raises; an out-of-range score is treated as absent.
    """
    table = table or DEFAULT_BAND_TABLE
    if score is not None and MIN_SCORE <= score <= MAX_SCORE:
        return table.categorize(score)
    return parse_raw_verdict(raw_verdict_text)


def verdict_for_stored_score(
    score: int | None, table: VerdictBandTable | None = None
) -> VerdictCategory:
    """Recompute the verdict for a persisted score with the shared table."""
    return derive_verdict(score, None, table)


# Display scores shown on the verdict card when the model gave none
FALLBACK_SCORES = {
    VerdictCategory.BUILD: 75,
    VerdictCategory.NARROW: 55,
    VerdictCategory.KILL: 25,
}


def fallback_score(category: VerdictCategory, table: VerdictBandTable | None = None) -> int | None:
    """Representative display score for a category when no score was given.

    Uses the fixed card value when it falls inside the category's band,
    otherwise the band midpoint. None if the table has no such band.
    """
    band = (table or DEFAULT_BAND_TABLE).band_for(category)
    if band is None:
        return None
    preferred = FALLBACK_SCORES.get(category)
    if preferred is not None and preferred in band:
        return preferred
    return (band.lower + band.upper) // 2


@dataclass(frozen=True)
class EvaluationOutcome:
    """The parsed, authoritative result of one evaluation."""

    raw_text: str
    score: int | None
    verdict: VerdictCategory
    inferred_category: str | None = None
    execution_difficulty: str | None = None

    @property
    def label(self) -> str:
        return self.verdict.label


def derive_outcome(raw_text: str, table: VerdictBandTable | None = None) -> EvaluationOutcome:
    """Parse score, verdict and metadata out of a model evaluation."""
    score = extract_score(raw_text)
    phrase = extract_verdict_phrase(raw_text)

    if score is not None or phrase is not None:
        verdict = derive_verdict(score, phrase, table)
    else:
        verdict = scan_verdict_labels(raw_text)

    if score is not None:
        logger.info(f"Deterministic verdict: score={score}% -> {verdict.label}")
    else:
        logger.warning(f"No score found in evaluation, fallback verdict: {verdict.label}")

    return EvaluationOutcome(
        raw_text=raw_text,
        score=score,
        verdict=verdict,
        inferred_category=extract_labeled_field(raw_text, "PROJECT TYPE"),
        execution_difficulty=extract_labeled_field(raw_text, "EXECUTION DIFFICULTY"),
    )
