"""Maps an EventRecord to its counter key and severity class."""

from __future__ import annotations

from eventrouter.models.events import EventRecord, LabelTuple, SeverityClass

_KNOWN_SEVERITIES: dict[str, SeverityClass] = {
    SeverityClass.NORMAL.value: SeverityClass.NORMAL,
    SeverityClass.WARNING.value: SeverityClass.WARNING,
    SeverityClass.INFO.value: SeverityClass.INFO,
}


def classify(record: EventRecord) -> tuple[LabelTuple, SeverityClass]:
    """Return the label tuple and severity class for *record*.

    Severity matching is exact and case-sensitive; anything other than
    ``Normal``, ``Warning`` or ``Info`` (including "") is ``Unknown``.
    """
    labels = LabelTuple(
        kind=record.kind,
        name=record.name,
        namespace=record.namespace,
        reason=record.reason,
        source_host=record.source_host,
        event_name=record.event_name,
    )
    return labels, _KNOWN_SEVERITIES.get(record.severity, SeverityClass.UNKNOWN)
