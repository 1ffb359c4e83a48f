"""Encoding, parsing and formatting of stored observation answers.

``observations.response`` is a single text column whose encoding depends on
the question type:

==========  ==========================================================
Type        Stored form
==========  ==========================================================
string      plain text
boolean     ``"true"`` / ``"false"`` (legacy rows may hold free text)
radio       the selected option label
checkbox    JSON array of selected labels
counter     decimal number as text
timer       JSON array of ``{"alias"?: str, "seconds"?: number}``
voice       ``[Audio: <url>]``
==========  ==========================================================

Three steps are kept apart:

- :func:`parse_response` turns the stored value into one of the
  ``*Response`` variants.  Malformed legacy data is expected, so parsing
  never raises; it returns :class:`MalformedResponse` instead.
- :func:`format_response` renders a parsed value for display.
- :func:`format_response_for_csv` renders it as one flat spreadsheet cell.

:func:`encode_response` goes the other way, from a client value to the
stored string, and does raise on input that does not fit the question type.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from field_observatory.core.exceptions import InvalidQuestionError


class QuestionType(str, Enum):
    """Supported question types.

    ``TEXT`` and ``NUMBER`` are legacy spellings kept for old projects; they
    behave like ``STRING`` and ``COUNTER``.
    """

    STRING = "string"
    TEXT = "text"
    BOOLEAN = "boolean"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    COUNTER = "counter"
    NUMBER = "number"
    TIMER = "timer"
    VOICE = "voice"


#: Types offered when creating a new question.
CREATABLE_TYPES: frozenset[QuestionType] = frozenset({
    QuestionType.STRING,
    QuestionType.BOOLEAN,
    QuestionType.RADIO,
    QuestionType.CHECKBOX,
    QuestionType.COUNTER,
    QuestionType.TIMER,
    QuestionType.VOICE,
})

#: Types whose definition carries a list of allowed labels.
CHOICE_TYPES: frozenset[QuestionType] = frozenset({QuestionType.RADIO, QuestionType.CHECKBOX})

# Display markers
NO_RESPONSE = "No response"
AFFIRMATIVE = "Yes"
NEGATIVE = "No"
INVALID_VALUE = "Invalid value"
EMPTY_SELECTION = "No selection"
NO_CYCLES = "No cycles"
NO_DURATION = "No duration"
NO_RECORDING = "No recording"

CSV_LIST_SEPARATOR = "; "
CSV_CYCLE_SEPARATOR = " | "

VOICE_PREFIX = "[Audio: "
VOICE_PATTERN = re.compile(r"\[Audio: (.*?)\]")


def coerce_question_type(value: Union[QuestionType, str, None]) -> Optional[QuestionType]:
    if isinstance(value, QuestionType):
        return value
    try:
        return QuestionType(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Parsed variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoResponse:
    pass


@dataclass(frozen=True)
class TextResponse:
    text: str


@dataclass(frozen=True)
class BooleanResponse:
    value: bool


@dataclass(frozen=True)
class NumericResponse:
    raw: str
    value: float


@dataclass(frozen=True)
class ChoicesResponse:
    selected: tuple[str, ...]


@dataclass(frozen=True)
class TimerCycle:
    alias: Optional[str] = None
    seconds: Optional[float] = None

    def label(self, index: int) -> str:
        """Alias, or ``"Cycle N"`` with *index* 0-based."""
        return self.alias or f"Cycle {index + 1}"


@dataclass(frozen=True)
class TimerResponse:
    cycles: tuple[TimerCycle, ...]


@dataclass(frozen=True)
class VoiceResponse:
    url: str


@dataclass(frozen=True)
class MalformedResponse:
    raw: Any
    reason: str


ParsedResponse = Union[
    NoResponse,
    TextResponse,
    BooleanResponse,
    NumericResponse,
    ChoicesResponse,
    TimerResponse,
    VoiceResponse,
    MalformedResponse,
]


def _load_json(raw: Any) -> tuple[Any, Optional[str]]:
    if not isinstance(raw, str):
        return raw, None
    try:
        return json.loads(raw), None
    except (ValueError, TypeError) as exc:
        return None, f"invalid JSON: {exc}"


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _parse_timer_item(item: Any) -> TimerCycle:
    if not isinstance(item, dict):
        return TimerCycle()
    alias = item.get("alias")
    return TimerCycle(
        alias=alias if isinstance(alias, str) and alias else None,
        seconds=_as_number(item.get("seconds")) if "seconds" in item else None,
    )


def extract_voice_url(raw: Any) -> Optional[str]:
    """Return the URL embedded in a ``[Audio: <url>]`` answer, if any."""
    if not isinstance(raw, str):
        return None
    match = VOICE_PATTERN.search(raw)
    if match is None or not match.group(1):
        return None
    return match.group(1)


def voice_blob_key(url: str) -> str:
    """Object key of a voice recording: the last path segment of its URL."""
    return url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]


def parse_response(raw: Any, question_type: Union[QuestionType, str, None]) -> ParsedResponse:
    """Parse a stored answer according to its question type.

    Never raises.  Blank strings count as no response for every type.
    Unknown question types are treated as plain text.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return NoResponse()

    qtype = coerce_question_type(question_type)

    if qtype is QuestionType.BOOLEAN:
        if raw is True or raw == "true":
            return BooleanResponse(True)
        if raw is False or raw == "false":
            return BooleanResponse(False)
        if isinstance(raw, str):
            return TextResponse(raw)
        return MalformedResponse(raw, "not a boolean")

    if qtype in (QuestionType.COUNTER, QuestionType.NUMBER):
        number = _as_number(raw)
        if number is None:
            return MalformedResponse(raw, "not a number")
        return NumericResponse(raw=raw if isinstance(raw, str) else str(raw), value=number)

    if qtype is QuestionType.CHECKBOX:
        data, error = _load_json(raw)
        if error is not None:
            return MalformedResponse(raw, error)
        if not isinstance(data, list):
            return MalformedResponse(raw, "not a JSON array")
        return ChoicesResponse(tuple(str(item) for item in data))

    if qtype is QuestionType.TIMER:
        data, error = _load_json(raw)
        if error is not None:
            return MalformedResponse(raw, error)
        if not isinstance(data, list):
            return MalformedResponse(raw, "not a JSON array")
        return TimerResponse(tuple(_parse_timer_item(item) for item in data))

    if qtype is QuestionType.VOICE:
        url = extract_voice_url(raw)
        if url is None:
            return MalformedResponse(raw, "no [Audio: <url>] wrapper")
        return VoiceResponse(url)

    if isinstance(raw, str):
        return TextResponse(raw)
    return TextResponse(json.dumps(raw, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Render seconds as ``H:MM:SS`` (an hour or more) or ``M:SS``."""
    total = max(int(seconds), 0)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True)
class DisplayValue:
    """A rendered answer.

    Attributes:
        kind: ``"text"``, ``"marker"`` (a placeholder such as "No response"),
            ``"cycles"`` or ``"audio"``.
        text: One-line human-readable rendering.
        cycles: ``(label, duration)`` pairs for timer answers.
        url: Recording URL for voice answers.
    """

    kind: str
    text: str
    cycles: tuple[tuple[str, str], ...] = field(default=())
    url: Optional[str] = None

    @property
    def is_marker(self) -> bool:
        return self.kind == "marker"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "text": self.text,
            "cycles": [{"label": label, "duration": duration} for label, duration in self.cycles],
            "url": self.url,
        }


def _marker(text: str) -> DisplayValue:
    return DisplayValue(kind="marker", text=text)


def _malformed_marker(question_type: Optional[QuestionType]) -> DisplayValue:
    if question_type is QuestionType.CHECKBOX:
        return _marker(EMPTY_SELECTION)
    if question_type is QuestionType.TIMER:
        return _marker(NO_CYCLES)
    if question_type is QuestionType.VOICE:
        return _marker(NO_RECORDING)
    if question_type in (QuestionType.COUNTER, QuestionType.NUMBER):
        return _marker(INVALID_VALUE)
    return _marker(NO_RESPONSE)


def render_parsed(parsed: ParsedResponse, question_type: Union[QuestionType, str, None]) -> DisplayValue:
    """Render an already parsed answer for display."""
    qtype = coerce_question_type(question_type)

    if isinstance(parsed, NoResponse):
        return _marker(NO_RESPONSE)
    if isinstance(parsed, MalformedResponse):
        return _malformed_marker(qtype)
    if isinstance(parsed, BooleanResponse):
        return DisplayValue(kind="text", text=AFFIRMATIVE if parsed.value else NEGATIVE)
    if isinstance(parsed, NumericResponse):
        return DisplayValue(kind="text", text=parsed.raw.strip())
    if isinstance(parsed, ChoicesResponse):
        if not parsed.selected:
            return _marker(EMPTY_SELECTION)
        return DisplayValue(kind="text", text=", ".join(parsed.selected))
    if isinstance(parsed, TimerResponse):
        if not parsed.cycles:
            return _marker(NO_CYCLES)
        pairs = tuple(
            (
                cycle.label(index),
                format_duration(cycle.seconds) if cycle.seconds is not None else NO_DURATION,
            )
            for index, cycle in enumerate(parsed.cycles)
        )
        text = CSV_CYCLE_SEPARATOR.join(f"{label}: {duration}" for label, duration in pairs)
        return DisplayValue(kind="cycles", text=text, cycles=pairs)
    if isinstance(parsed, VoiceResponse):
        return DisplayValue(kind="audio", text=parsed.url, url=parsed.url)
    return DisplayValue(kind="text", text=parsed.text)


def format_response(raw: Any, question_type: Union[QuestionType, str, None]) -> DisplayValue:
    """Render a stored answer for display.  Total: never raises."""
    return render_parsed(parse_response(raw, question_type), question_type)


# ---------------------------------------------------------------------------
# CSV formatting
# ---------------------------------------------------------------------------


def _seconds_text(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else str(seconds)


def format_response_for_csv(raw: Any, question_type: Union[QuestionType, str, None]) -> str:
    """Render a stored answer as a single flat CSV cell.

    Missing and malformed answers become an empty cell.  Checkbox selections
    are joined with ``"; "``; timer cycles become ``alias:seconds`` pairs
    joined with ``" | "``; voice answers export their recording URL.
    """
    parsed = parse_response(raw, question_type)

    if isinstance(parsed, (NoResponse, MalformedResponse)):
        return ""
    if isinstance(parsed, BooleanResponse):
        return AFFIRMATIVE if parsed.value else NEGATIVE
    if isinstance(parsed, NumericResponse):
        return parsed.raw.strip()
    if isinstance(parsed, ChoicesResponse):
        return CSV_LIST_SEPARATOR.join(parsed.selected)
    if isinstance(parsed, TimerResponse):
        return CSV_CYCLE_SEPARATOR.join(
            f"{cycle.label(index)}:{_seconds_text(cycle.seconds) if cycle.seconds is not None else ''}"
            for index, cycle in enumerate(parsed.cycles)
        )
    if isinstance(parsed, VoiceResponse):
        return parsed.url
    return parsed.text


# ---------------------------------------------------------------------------
# Encoding client values
# ---------------------------------------------------------------------------


def encode_voice_response(url: str) -> str:
    return f"{VOICE_PREFIX}{url}]"


def encode_response(
    value: Any,
    question_type: Union[QuestionType, str, None],
    allowed_options: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Encode a client-supplied answer into its stored string form.

    Already-encoded strings are accepted for every type (a checkbox answer
    may arrive as ``'["a","b"]'`` or as ``["a", "b"]``).  ``None`` clears the
    answer.

    Args:
        value: The answer as sent by the client.
        question_type: Type of the question being answered.
        allowed_options: Labels configured on a radio/checkbox question.  When
            non-empty, selections outside this list are rejected.

    Returns:
        The string to store, or ``None``.

    Raises:
        InvalidQuestionError: If *value* does not fit the question type.
    """
    if value is None:
        return None

    qtype = coerce_question_type(question_type)
    allowed = list(allowed_options or [])

    if qtype is QuestionType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower()
        raise InvalidQuestionError("Boolean answers must be true or false", field="response")

    if qtype in (QuestionType.COUNTER, QuestionType.NUMBER):
        number = _as_number(value)
        if number is None:
            raise InvalidQuestionError("Counter answers must be numeric", field="response")
        return value.strip() if isinstance(value, str) else _seconds_text(number)

    if qtype is QuestionType.RADIO:
        if not isinstance(value, str):
            raise InvalidQuestionError("Radio answers must be a single label", field="response")
        if allowed and value not in allowed:
            raise InvalidQuestionError(f"'{value}' is not one of the options", field="response")
        return value

    if qtype is QuestionType.CHECKBOX:
        data, error = _load_json(value)
        if error is not None or not isinstance(data, list):
            raise InvalidQuestionError("Checkbox answers must be a list of labels", field="response")
        labels = [str(item) for item in data]
        unknown = [label for label in labels if allowed and label not in allowed]
        if unknown:
            raise InvalidQuestionError(
                f"Not among the options: {', '.join(unknown)}", field="response"
            )
        return json.dumps(labels, ensure_ascii=False)

    if qtype is QuestionType.TIMER:
        data, error = _load_json(value)
        if error is not None or not isinstance(data, list):
            raise InvalidQuestionError("Timer answers must be a list of cycles", field="response")
        cycles: list[dict[str, Any]] = []
        for item in data:
            if not isinstance(item, dict):
                raise InvalidQuestionError("Each timer cycle must be an object", field="response")
            cycle: dict[str, Any] = {}
            if item.get("alias"):
                cycle["alias"] = str(item["alias"])
            if item.get("seconds") is not None:
                seconds = _as_number(item["seconds"])
                if seconds is None or seconds < 0:
                    raise InvalidQuestionError(
                        "Timer seconds must be a non-negative number", field="response"
                    )
                cycle["seconds"] = int(seconds) if seconds.is_integer() else seconds
            cycles.append(cycle)
        return json.dumps(cycles, ensure_ascii=False)

    if qtype is QuestionType.VOICE:
        if not isinstance(value, str):
            raise InvalidQuestionError("Voice answers must be a recording URL", field="response")
        if not value.strip():
            return None
        if extract_voice_url(value) is not None:
            return value
        return encode_voice_response(value.strip())

    if isinstance(value, str):
        return value
    raise InvalidQuestionError("Text answers must be a string", field="response")
