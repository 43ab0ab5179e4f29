"""Identity of a planned occurrence.

A planned occurrence is either a stored row (one-off or template override)
or a virtual occurrence computed from a template for a given date. The
textual token form is only used at the edges (dismissal rows, pending-match
ids, caller input):

    stored:  "<uuid>"
    virtual: "virtual_<templateId>_<expectedDateISO>"
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from forecast_match.services.errors import raise_invalid_argument

VIRTUAL_PREFIX = "virtual"


@dataclass(frozen=True)
class StoredOccurrenceRef:
    occurrence_id: UUID

    @property
    def is_virtual(self) -> bool:
        return False

    def to_token(self) -> str:
        return str(self.occurrence_id)


@dataclass(frozen=True)
class VirtualOccurrenceRef:
    template_id: UUID
    expected_date: date

    @property
    def is_virtual(self) -> bool:
        return True

    def to_token(self) -> str:
        return f"{VIRTUAL_PREFIX}_{self.template_id}_{self.expected_date.isoformat()}"


OccurrenceRef = StoredOccurrenceRef | VirtualOccurrenceRef


def _parse_uuid(value: str, what: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise_invalid_argument(f"Invalid {what}: {value!r}", cause=exc)


def _parse_expected_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        # Full timestamps ("2024-03-15T00:00:00.000Z") carry the date in their prefix
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise_invalid_argument("Invalid virtual planned occurrence ID", cause=exc)


def parse_occurrence_ref(token: str) -> OccurrenceRef:
    """Parse a textual occurrence id.

    Virtual ids split on ``_``: the second segment is the template id and
    everything after it is the expected date, so template ids must not
    contain ``_``.

    Raises:
        InvalidArgumentError: If the token is empty or malformed.
    """
    if not token:
        raise_invalid_argument("Planned occurrence ID is required")

    if token.startswith(f"{VIRTUAL_PREFIX}_"):
        parts = token.split("_")
        template_part = parts[1] if len(parts) > 1 else ""
        date_part = "_".join(parts[2:])
        if not template_part or not date_part:
            raise_invalid_argument("Invalid virtual planned occurrence ID")
        return VirtualOccurrenceRef(
            template_id=_parse_uuid(template_part, "planned template ID"),
            expected_date=_parse_expected_date(date_part),
        )

    return StoredOccurrenceRef(occurrence_id=_parse_uuid(token, "planned occurrence ID"))


def coerce_occurrence_ref(value: OccurrenceRef | str) -> OccurrenceRef:
    """Accept either a typed ref or its token form."""
    if isinstance(value, (StoredOccurrenceRef, VirtualOccurrenceRef)):
        return value
    return parse_occurrence_ref(value)
