"""Canonicalization of beneficiary analysis payloads.

The analysis job answers with an envelope ``{"result": {"status": ..., "data": ...}}``
where ``data`` is usually JSON text holding an ``Output`` array of single-key
sections::

    {"Output": [{"DMS": [...]}, {"PAS": [...]}, {"Summary": "..."}, {"BeneScoring": [...]}]}

Neither ordering, presence nor the casing of ``Output`` is guaranteed. Everything
in this module is pure: no I/O and no state. ``canonicalize_payload`` never raises;
malformed shapes come back as a ``ParseError`` value.
"""
import json
import math
import re
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Union

from beneficiary_orchestrator.analysis.models import (
    CanonicalBeneficiary,
    ComparisonResult,
    ConfidenceScores,
    ShareComparison,
    ShareTotals,
)
from beneficiary_orchestrator.core.config import Settings, get_settings
from beneficiary_orchestrator.core.enums import ConfidenceMode, MatchStatus, ParseErrorReason, ResultSource
from beneficiary_orchestrator.core.errors import ParseError

COMPLETE_STATUS = "complete"
OUTPUT_KEY = "output"

DMS_KEY = "DMS"
PAS_KEY = "PAS"
SUMMARY_KEY = "Summary"
SCORING_KEY = "BeneScoring"
SHARE_TOTALS_KEY = "totalBeneficiaryShares"
PRIMARY_SHARES_KEY = "PrimaryShares"
CONTINGENT_SHARES_KEY = "ContingentShares"
MATCH_LITERAL = "MATCH"

EXTRACTED_ID_PREFIX = "bene"
ADMINISTRATIVE_ID_PREFIX = "admin"

# Upstream encodes a beneficiary's position in the field name instead of using a
# stable key. This is a fixed positional lookup, not a schema.
ORDINAL_NAME_KEYS = (
    "FirstBeneficiaryName",
    "SecondBeneficiaryName",
    "ThirdBeneficiaryName",
    "FourthBeneficiaryName",
)

# Score entry key -> ConfidenceScores field.
SCORED_FIELDS = (
    ("beneficiaryType", "relationship"),
    ("beneficiaryPercentage", "percentage"),
    ("beneficiaryDOB", "date_of_birth"),
)

_LEADING_INT = re.compile(r"^[+-]?\d+")


@dataclass(frozen=True)
class DmsSection:
    records: list[Any]


@dataclass(frozen=True)
class PasSection:
    records: list[Any]


@dataclass(frozen=True)
class SummarySection:
    text: str


@dataclass(frozen=True)
class ScoringSection:
    entries: list[Any]


@dataclass(frozen=True)
class UnknownSection:
    raw: Any


Section = Union[DmsSection, PasSection, SummarySection, ScoringSection, UnknownSection]


@dataclass
class AnalysisSections:
    dms: list[Any] = field(default_factory=list)
    pas: list[Any] = field(default_factory=list)
    summary: str = ""
    scoring: list[Any] = field(default_factory=list)
    recognized: int = 0


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def extract_status(envelope: Any) -> str | None:
    if not isinstance(envelope, dict):
        return None
    result = envelope.get("result")
    if not isinstance(result, dict):
        return None
    status = result.get("status")
    return status if isinstance(status, str) else None


def is_complete(envelope: Any) -> bool:
    return extract_status(envelope) == COMPLETE_STATUS


def decode_analysis_data(envelope: Any) -> dict[str, Any]:
    result = envelope.get("result") if isinstance(envelope, dict) else None
    if not isinstance(result, dict):
        raise ParseError(ParseErrorReason.MISSING_OUTPUT_ARRAY, "Payload has no result envelope")

    data = result.get("data")
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except (ValueError, RecursionError) as exc:
            raise ParseError(
                ParseErrorReason.JSON_DECODE_FAILED,
                f"Analysis data is not valid JSON: {exc}",
            ) from exc

    if not isinstance(data, dict):
        raise ParseError(ParseErrorReason.MISSING_OUTPUT_ARRAY, "Analysis data is not a JSON object")
    return data


def locate_output(data: dict[str, Any]) -> list[Any]:
    for key, value in data.items():
        if isinstance(key, str) and key.lower() == OUTPUT_KEY:
            output = value
            break
    else:
        raise ParseError(ParseErrorReason.MISSING_OUTPUT_ARRAY, "Analysis data has no Output array")

    if not isinstance(output, list) or not output:
        raise ParseError(ParseErrorReason.MISSING_OUTPUT_ARRAY, "Output is missing, empty or not an array")
    return output


def parse_section(element: Any) -> Section:
    if not isinstance(element, dict):
        return UnknownSection(element)

    for key, value in element.items():
        if key == DMS_KEY:
            return DmsSection(_as_list(value))
        if key == PAS_KEY:
            return PasSection(_as_list(value))
        if key == SUMMARY_KEY:
            return SummarySection("" if value is None else str(value))
        if key == SCORING_KEY:
            return ScoringSection(_as_list(value))
    return UnknownSection(element)


def collect_sections(output: list[Any]) -> AnalysisSections:
    sections = AnalysisSections()
    seen: set[type] = set()

    for element in output:
        section = parse_section(element)
        kind = type(section)
        if kind is UnknownSection or kind in seen:
            continue
        seen.add(kind)
        sections.recognized += 1

        if isinstance(section, DmsSection):
            sections.dms = section.records
        elif isinstance(section, PasSection):
            sections.pas = section.records
        elif isinstance(section, SummarySection):
            sections.summary = section.text
        elif isinstance(section, ScoringSection):
            sections.scoring = section.entries

    return sections


def _leading_int(text: str) -> int | None:
    match = _LEADING_INT.match(text)
    if not match:
        return None
    try:
        return int(match.group())
    except ValueError:
        # Past the interpreter's int string conversion limit.
        return None


def parse_percentage(value: Any) -> int:
    """Parse ``"50%"``-style shares into an integer in ``[0, 100]``; unreadable values give 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        number = int(value)
    elif isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        if text.endswith("%"):
            text = text[:-1].strip()
        number = _leading_int(text)
        if number is None:
            return 0
    return max(0, min(100, number))


def parse_share_total(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else 0
    number = _leading_int(str(value).strip().rstrip("%").strip())
    return 0 if number is None else number


def parse_score(value: Any) -> float | None:
    """Scores arrive as percent strings (``"92"``); returns a fraction or None when unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            number = math.inf if value > 0 else -math.inf
    else:
        text = str(value).strip().rstrip("%").strip()
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return round(_clamp(number / 100.0), 4)


def _first_ordinal_value(record: dict[str, Any]) -> Any:
    for key in ORDINAL_NAME_KEYS:
        value = record.get(key)
        if value is not None and _text(value):
            return value
    return None


def resolve_name(record: Any, position: int) -> str:
    if isinstance(record, dict):
        value = _first_ordinal_value(record)
        if value is not None:
            return _text(value)
    return f"Beneficiary {position + 1}"


def build_confidence(score_entry: Any, settings: Settings) -> ConfidenceScores:
    default = settings.confidence_default
    ssn_like = settings.confidence_ssn_default

    scored: dict[str, float] = {}
    if isinstance(score_entry, dict):
        name_score = parse_score(_first_ordinal_value(score_entry))
        if name_score is not None:
            scored["name"] = name_score
        for source_key, target in SCORED_FIELDS:
            value = parse_score(score_entry.get(source_key))
            if value is not None:
                scored[target] = value

    fields = {
        "name": scored.get("name", default),
        "relationship": scored.get("relationship", default),
        "percentage": scored.get("percentage", default),
        "date_of_birth": scored.get("date_of_birth", default),
    }
    # overall averages all four fields, defaults included.
    return ConfidenceScores(
        overall=round(mean(fields.values()), 4),
        **fields,
        address=ssn_like,
        ssn=ssn_like,
    )


def split_scoring(entries: list[Any]) -> tuple[list[Any], ShareTotals]:
    """Separate per-beneficiary score entries (index aligned) from the share totals wrapper."""
    per_beneficiary: list[Any] = []
    totals: ShareTotals | None = None

    for entry in entries:
        if isinstance(entry, dict) and SHARE_TOTALS_KEY in entry:
            if totals is None:
                totals = parse_share_totals(entry[SHARE_TOTALS_KEY])
            continue
        per_beneficiary.append(entry)

    return per_beneficiary, totals or ShareTotals()


def _share_comparison(raw: Any) -> ShareComparison | None:
    if not isinstance(raw, dict):
        return None
    return ShareComparison(
        extracted_total=parse_share_total(raw.get(DMS_KEY)),
        administrative_total=parse_share_total(raw.get(PAS_KEY)),
        is_match=raw.get("Match") == MATCH_LITERAL,
    )


def parse_share_totals(items: Any) -> ShareTotals:
    primary = None
    contingent = None
    for item in _as_list(items):
        if not isinstance(item, dict):
            continue
        if primary is None and PRIMARY_SHARES_KEY in item:
            primary = _share_comparison(item[PRIMARY_SHARES_KEY])
        if contingent is None and CONTINGENT_SHARES_KEY in item:
            contingent = _share_comparison(item[CONTINGENT_SHARES_KEY])
    return ShareTotals(primary=primary, contingent=contingent)


def canonicalize_record(
    record: Any,
    *,
    position: int,
    id_prefix: str,
    score_entry: Any,
    settings: Settings,
) -> CanonicalBeneficiary:
    raw = record if isinstance(record, dict) else {}
    beneficiary_type = _text(raw.get("beneficiaryType"))
    return CanonicalBeneficiary(
        id=f"{id_prefix}-{position + 1}",
        full_name=resolve_name(raw, position),
        relationship=_text(raw.get("beneficiaryRelationship")) or beneficiary_type,
        beneficiary_type=beneficiary_type,
        date_of_birth=_text(raw.get("beneficiaryDOB")),
        percentage=parse_percentage(raw.get("beneficiaryPercentage")),
        phone=_optional_text(raw.get("beneficiaryPhone")),
        email=_optional_text(raw.get("beneficiaryEmail")),
        confidence=build_confidence(score_entry, settings),
        source_document_id=_optional_text(raw.get("documentID")),
    )


def canonicalize_records(
    records: list[Any],
    *,
    id_prefix: str,
    score_entries: list[Any],
    settings: Settings,
) -> list[CanonicalBeneficiary]:
    return [
        canonicalize_record(
            record,
            position=idx,
            id_prefix=id_prefix,
            score_entry=score_entries[idx] if idx < len(score_entries) else None,
            settings=settings,
        )
        for idx, record in enumerate(records)
    ]


def decide_match_status(
    extracted: list[CanonicalBeneficiary],
    administrative: list[CanonicalBeneficiary],
    share_totals: ShareTotals,
) -> MatchStatus:
    if not extracted and not administrative:
        return MatchStatus.NO_DATA
    comparisons = share_totals.present()
    if comparisons and all(item.is_match for item in comparisons):
        return MatchStatus.MATCH
    return MatchStatus.MISMATCH


def compute_overall_confidence(
    match_status: MatchStatus,
    beneficiaries: list[CanonicalBeneficiary],
    settings: Settings,
) -> float:
    if match_status == MatchStatus.NO_DATA:
        return 0.0
    if settings.confidence_mode == ConfidenceMode.COMPUTED and beneficiaries:
        return round(mean(item.confidence.overall for item in beneficiaries), 2)
    if match_status == MatchStatus.MATCH:
        return settings.match_confidence
    return settings.mismatch_confidence


def _canonicalize(envelope: Any, settings: Settings) -> ComparisonResult:
    data = decode_analysis_data(envelope)
    sections = collect_sections(locate_output(data))
    if sections.recognized == 0:
        raise ParseError(ParseErrorReason.EMPTY_SECTIONS, "Output contains no DMS, PAS, Summary or BeneScoring section")

    score_entries, share_totals = split_scoring(sections.scoring)
    extracted = canonicalize_records(
        sections.dms,
        id_prefix=EXTRACTED_ID_PREFIX,
        score_entries=score_entries,
        settings=settings,
    )
    administrative = canonicalize_records(
        sections.pas,
        id_prefix=ADMINISTRATIVE_ID_PREFIX,
        score_entries=score_entries,
        settings=settings,
    )
    match_status = decide_match_status(extracted, administrative, share_totals)

    return ComparisonResult(
        extracted=extracted,
        administrative=administrative,
        match_status=match_status,
        overall_confidence=compute_overall_confidence(match_status, [*extracted, *administrative], settings),
        summary=sections.summary,
        share_totals=share_totals,
        source=ResultSource.ANALYSIS,
    )


def canonicalize_payload(envelope: Any, *, settings: Settings | None = None) -> ComparisonResult | ParseError:
    try:
        return _canonicalize(envelope, settings or get_settings())
    except ParseError as exc:
        return exc
    except (ValueError, TypeError, OverflowError, RecursionError) as exc:
        return ParseError(ParseErrorReason.UNREADABLE_SECTION, f"Analysis data could not be read: {exc!r}")
