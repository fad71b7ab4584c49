"""
Multi-strategy decoder for free-text responses that should contain JSON.

Generative services frequently wrap JSON in markdown, surround it with
prose, truncate it mid-record or emit JavaScript-flavoured syntax. The
decoder tries progressively more permissive strategies and reports which
ones it attempted. Results are tagged values (DecodeSuccess or
DecodeFailure) rather than exceptions.

Strategy order:
    1. direct_parse        - the whole text as JSON
    2. strip_markdown      - remove code fences and backticks
    3. balanced_extract    - first balanced {...} / [...] found by scanning
    4. code_block_<i>      - every fenced block independently
    5. partial_salvage     - complete prefix of a truncated value (allow_partial)
    6. line_reconstruction - "field": value lines assembled into records (shape)
    7. pattern_extract     - flat {...} objects carrying the leading field (shape)
    8. aggressive_cleanup  - trailing commas, bare keys, quotes, then parse
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from jobwaterfall.config import DecoderConfig
from jobwaterfall.utils.exceptions import DecodeError

logger = logging.getLogger(__name__)


SALVAGE_STRATEGIES = frozenset({"partial_salvage", "line_reconstruction", "pattern_extract"})

_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = {"}": "{", "]": "["}

FENCE_PATTERN = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)
FENCE_MARKER_PATTERN = re.compile(r"```[ \t]*(?:json|javascript|js|typescript|ts)?[ \t]*", re.IGNORECASE)
FLAT_OBJECT_PATTERN = re.compile(r"\{[^{}]*\}")
FIELD_VALUE_PATTERN = re.compile(
    r'"(?P<key>[^"\\]+)"\s*:\s*'
    r'(?P<value>"(?:[^"\\]|\\.)*"|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null|\[[^\[\]]*\])'
)

# Upper bound on candidate start positions examined by scanning strategies
MAX_SCAN_CANDIDATES = 25


@dataclass(frozen=True)
class RecordShape:
    """
    Known record layout used by the reconstruction strategies.

    Attributes:
        name: Shape name (matches a SchemaValidator shape)
        fields: Field names as they appear in upstream JSON
        leading_field: Field that starts every record
    """

    name: str
    fields: tuple[str, ...]
    leading_field: str


JOB_LISTING_SHAPE = RecordShape(
    name="job_listing",
    fields=(
        "title", "company", "location", "url", "summary", "description", "salary",
        "postedDate", "source", "skillMatchPercent", "skills", "workType",
        "experienceLevel",
    ),
    leading_field="title",
)


@dataclass(frozen=True)
class DecodeSuccess:
    """A structured value recovered from text."""

    value: Any
    strategy: str
    attempts: tuple[str, ...]
    ok: bool = field(default=True, init=False)

    @property
    def salvaged(self) -> bool:
        """True if the value came from a lossy recovery strategy."""
        return self.strategy in SALVAGE_STRATEGIES


@dataclass(frozen=True)
class DecodeFailure:
    """Every strategy failed."""

    attempts: tuple[str, ...]
    raw_preview: str
    ok: bool = field(default=False, init=False)


DecodeResult = Union[DecodeSuccess, DecodeFailure]


class _Unparsed(Exception):
    """Internal signal that a strategy produced nothing usable."""


def _loads(text: str) -> Any:
    text = text.strip()
    if not text:
        raise _Unparsed("empty")
    try:
        return json.loads(text, strict=False)
    except (json.JSONDecodeError, RecursionError) as e:
        raise _Unparsed(str(e)) from e


def _scan(text: str, start: int) -> tuple[Optional[int], list[tuple[int, tuple[str, ...]]], list[str]]:
    """
    String-aware bracket scan from ``text[start]`` (an opener).

    Returns:
        (end index of the balanced value or None,
         safe cut points as (index, open stack after the cut),
         open stack at end of text, empty on a mismatched closer)
    """
    stack: list[str] = []
    safe_points: list[tuple[int, tuple[str, ...]]] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                return None, safe_points, []
            stack.pop()
            if not stack:
                return i, safe_points, stack
            safe_points.append((i, tuple(stack)))

    return None, safe_points, stack


def _starts_value(text: str, start: int) -> bool:
    """True if the opener at ``start`` is followed by something JSON could put there."""
    rest = text[start + 1:].lstrip()
    if not rest:
        return True
    if text[start] == "{":
        return rest[0] in "\"}"
    return rest[0] in "\"{[]-0123456789tfn"


def _opener_positions(text: str) -> Iterator[int]:
    count = 0
    for i, ch in enumerate(text):
        if ch in _OPENERS:
            yield i
            count += 1
            if count >= MAX_SCAN_CANDIDATES:
                return


class ResponseDecoder:
    """
    Turn unreliable free-text output into structured values.

    Example:
        >>> decoder = ResponseDecoder()
        >>> result = decoder.parse('Sure! ```json\\n[{"title": "Sales Rep"}]\\n```')
        >>> result.ok, result.strategy
        (True, 'balanced_extract')
        >>> decoder.completeness('[{"title": "a"}, {"title": "b"')
        0.25
    """

    def __init__(self, preview_chars: Optional[int] = None):
        """
        Initialize decoder.

        Args:
            preview_chars: Characters of raw text kept on failure
                (defaults to DecoderConfig.RAW_PREVIEW_CHARS)
        """
        self.preview_chars = preview_chars or DecoderConfig.RAW_PREVIEW_CHARS
        self._stats: dict[str, int] = {"successes": 0, "failures": 0}

    # ---- public API -------------------------------------------------

    def parse(
        self,
        text: Optional[str],
        allow_partial: bool = False,
        shape: Optional[RecordShape] = None,
    ) -> DecodeResult:
        """
        Decode ``text`` with the first strategy that succeeds.

        Args:
            text: Raw text expected to contain one JSON value
            allow_partial: Enable salvage of truncated output (strategy 5)
            shape: Record layout enabling strategies 6 and 7

        Returns:
            DecodeSuccess with the value, winning strategy and attempt log,
            or DecodeFailure with the attempt log and a bounded preview
        """
        text = text or ""
        attempts: list[str] = []

        for name, strategy in self._strategies(text, allow_partial, shape):
            attempts.append(name)
            try:
                value = strategy()
            except _Unparsed:
                continue
            self._record(name)
            logger.debug(
                f"Decoded response with {name}",
                extra={"strategy": name, "attempts": len(attempts)},
            )
            return DecodeSuccess(value=value, strategy=name, attempts=tuple(attempts))

        self._stats["failures"] += 1
        preview = text[: self.preview_chars]
        logger.warning(
            f"All decode strategies failed ({len(attempts)} attempts)",
            extra={"attempts": attempts, "raw_length": len(text)},
        )
        return DecodeFailure(attempts=tuple(attempts), raw_preview=preview)

    def parse_or_raise(
        self,
        text: Optional[str],
        allow_partial: bool = False,
        shape: Optional[RecordShape] = None,
    ) -> DecodeSuccess:
        """
        Like ``parse`` but raise on failure.

        Raises:
            DecodeError: Carrying the attempted strategies and raw preview
        """
        result = self.parse(text, allow_partial=allow_partial, shape=shape)
        if isinstance(result, DecodeFailure):
            raise DecodeError(attempts=list(result.attempts), raw_preview=result.raw_preview)
        return result

    @staticmethod
    def completeness(text: Optional[str]) -> float:
        """
        Estimate how complete a JSON-ish text is.

        Averages ``min(closers / openers, 1)`` over braces and brackets
        found outside string literals. Text with no brackets scores 1.0
        unless it is empty.

        Returns:
            Ratio in [0, 1]
        """
        if not text or not text.strip():
            return 0.0

        counts = {"{": 0, "}": 0, "[": 0, "]": 0}
        in_string = False
        escaped = False
        for ch in text:
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch in counts:
                counts[ch] += 1

        ratios = [
            min(counts[close] / counts[open_], 1.0)
            for open_, close in (("{", "}"), ("[", "]"))
            if counts[open_] > 0
        ]
        if not ratios:
            return 1.0
        return round(sum(ratios) / len(ratios), 4)

    @staticmethod
    def ensure_list(value: Any, keys: tuple[str, ...] = ("jobs", "results", "data", "listings", "items")) -> list:
        """
        Normalize a decoded value to a list of items.

        A dict wrapping a list under a common key yields that list; any
        other dict yields a one-element list.
        """
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            for key in keys:
                if isinstance(value.get(key), list):
                    return value[key]
            return [value]
        return []

    def get_statistics(self) -> dict:
        return dict(self._stats)

    # ---- strategies -------------------------------------------------

    def _strategies(self, text: str, allow_partial: bool, shape: Optional[RecordShape]):
        yield "direct_parse", lambda: _loads(text)
        yield "strip_markdown", lambda: _loads(self._strip_markdown(text))
        yield "balanced_extract", lambda: self._balanced_extract(text)

        blocks = [m.group(2) for m in FENCE_PATTERN.finditer(text)]
        for i, block in enumerate(blocks):
            yield f"code_block_{i}", (lambda b=block: _loads(b))

        if allow_partial:
            yield "partial_salvage", lambda: self._partial_salvage(text)
        if shape is not None:
            yield "line_reconstruction", lambda: self._line_reconstruction(text, shape)
            yield "pattern_extract", lambda: self._pattern_extract(text, shape)

        yield "aggressive_cleanup", lambda: _loads(self._aggressive_cleanup(text))

    @staticmethod
    def _strip_markdown(text: str) -> str:
        stripped = FENCE_MARKER_PATTERN.sub("", text)
        return stripped.replace("`", "").strip()

    @staticmethod
    def _balanced_extract(text: str) -> Any:
        for start in _opener_positions(text):
            end, _, open_stack = _scan(text, start)
            if end is None:
                if open_stack and _starts_value(text, start):
                    # Truncated; every later opener is nested inside it
                    break
                continue
            try:
                return _loads(text[start:end + 1])
            except _Unparsed:
                continue
        raise _Unparsed("no balanced value")

    @staticmethod
    def _partial_salvage(text: str) -> Any:
        """
        Recover the complete prefix of a truncated value.

        Cuts after the last closed nested value and appends the closers
        still owed; falls back to the last balanced substring that parses.
        """
        start = next(_opener_positions(text), None)
        if start is None:
            raise _Unparsed("no opener")

        end, safe_points, _ = _scan(text, start)
        if end is None:
            for cut, open_stack in reversed(safe_points):
                closers = "".join(_OPENERS[o] for o in reversed(open_stack))
                try:
                    value = _loads(text[start:cut + 1] + closers)
                except _Unparsed:
                    continue
                if value:
                    return value

        last_value = None
        for candidate in _opener_positions(text):
            candidate_end, _, _ = _scan(text, candidate)
            if candidate_end is None:
                continue
            try:
                value = _loads(text[candidate:candidate_end + 1])
            except _Unparsed:
                continue
            if value:
                last_value = value
        if last_value is None:
            raise _Unparsed("nothing salvageable")
        return last_value

    @staticmethod
    def _line_reconstruction(text: str, shape: RecordShape) -> list[dict]:
        records: list[dict] = []
        current: dict[str, Any] = {}
        known = set(shape.fields)

        for line in text.splitlines():
            for match in FIELD_VALUE_PATTERN.finditer(line):
                key = match.group("key")
                if key not in known:
                    continue
                try:
                    value = json.loads(match.group("value"), strict=False)
                except json.JSONDecodeError:
                    continue
                if key == shape.leading_field and shape.leading_field in current:
                    records.append(current)
                    current = {}
                current[key] = value

        if shape.leading_field in current:
            records.append(current)

        records = [r for r in records if shape.leading_field in r]
        if not records:
            raise _Unparsed("no records reconstructed")
        return records

    @staticmethod
    def _pattern_extract(text: str, shape: RecordShape) -> list[dict]:
        records = []
        for match in FLAT_OBJECT_PATTERN.finditer(text):
            chunk = match.group(0)
            try:
                value = _loads(chunk)
            except _Unparsed:
                try:
                    value = _loads(ResponseDecoder._aggressive_cleanup(chunk))
                except _Unparsed:
                    continue
            if isinstance(value, dict) and shape.leading_field in value:
                records.append(value)
        if not records:
            raise _Unparsed("no flat records")
        return records

    @staticmethod
    def _aggressive_cleanup(text: str) -> str:
        first = min((i for i in (text.find("{"), text.find("[")) if i >= 0), default=-1)
        last = max(text.rfind("}"), text.rfind("]"))
        if first < 0 or last < first:
            raise _Unparsed("no brackets")
        cleaned = text[first:last + 1]

        cleaned = re.sub(r"/\*.*?\*/", "", cleaned, flags=re.DOTALL)
        cleaned = re.sub(r"^\s*//.*$", "", cleaned, flags=re.MULTILINE)
        cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", cleaned)
        # Single-quoted keys and values
        cleaned = re.sub(
            r"([\[{,:]\s*)'((?:[^'\\]|\\.)*)'",
            lambda m: m.group(1) + json.dumps(m.group(2)),
            cleaned,
        )
        # Bare keys
        cleaned = re.sub(r"([{,]\s*)([A-Za-z_$][\w$-]*)\s*:", r'\1"\2":', cleaned)
        # JavaScript and Python literals
        cleaned = re.sub(r"(:\s*)(NaN|-?Infinity|undefined|None)\b", r"\1null", cleaned)
        cleaned = re.sub(r"(:\s*)True\b", r"\1true", cleaned)
        cleaned = re.sub(r"(:\s*)False\b", r"\1false", cleaned)
        # Trailing commas
        cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
        return cleaned

    def _record(self, strategy: str) -> None:
        self._stats["successes"] += 1
        self._stats[strategy] = self._stats.get(strategy, 0) + 1

    def __repr__(self) -> str:
        return f"ResponseDecoder(preview_chars={self.preview_chars})"
