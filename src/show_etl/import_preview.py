"""show_etl.import_preview

Read-only preview of a batch of records.

preview_batch() plans each record in order against the current catalog and
returns the plans; nothing is written.  For the same records, catalog state
and ResolverContext.today the result is identical, so previews can be
repeated freely (admin UI, CLI --dry-run).
"""

from __future__ import annotations

from typing import Any, Iterable

from show_etl.import_planner import ImportPlan, plan_record
from show_etl.records import RawEventRecord
from show_etl.resolution_entities import ResolverContext, match_to_dict
from show_etl.shared import ImportCounters


def preview_batch(ctx: ResolverContext, records: Iterable[RawEventRecord]) -> list[ImportPlan]:
    return [plan_record(ctx, record) for record in records]


def preview_counters(plans: list[ImportPlan]) -> ImportCounters:
    """Counters a commit of these plans would produce right now."""
    ctrs = ImportCounters()
    for plan in plans:
        ctrs.records_read += 1
        ctrs.count_outcome(plan.outcome)
        if plan.can_import:
            ctrs.venues_created += plan.new_venue_count()
            ctrs.artists_created += plan.new_artist_count()
            if plan.flagged_for_review:
                ctrs.flagged_for_review += 1
        ctrs.warnings.extend(f"{plan.record.label}: {w}" for w in plan.warnings)
    return ctrs


def plan_to_payload(plan: ImportPlan) -> dict[str, Any]:
    """Render a plan as the preview response body."""
    draft = plan.show_draft
    record = plan.record
    return {
        "show": {
            "title": draft.title,
            "event_date": draft.event_date.isoformat() if draft.event_date else None,
            "city": draft.city,
            "state": draft.state,
            "price": str(draft.price) if draft.price is not None else None,
            "age_requirement": draft.age_requirement,
            "description": draft.description,
            "image_url": draft.image_url,
            "ticket_url": draft.ticket_url,
            "source": record.source,
            "source_venue": record.source_venue_key,
            "source_event_id": record.source_event_id,
        },
        "venues": [
            {
                "name": ref.name,
                "city": ref.city,
                "state": ref.state,
                "address": ref.address,
                "match": match_to_dict(match),
            }
            for ref, match in zip(plan.venues, plan.venue_matches)
        ],
        "artists": [
            {
                "name": ref.name,
                "set_type": ref.set_type,
                "position": position,
                "match": match_to_dict(match),
            }
            for position, (ref, match) in enumerate(zip(plan.artists, plan.artist_matches))
        ],
        "warnings": list(plan.warnings),
        "can_import": plan.can_import,
        "skip_reason": plan.skip_reason,
        "existing_show_id": plan.existing_show_id,
        "rejection_reason": plan.rejection_reason,
        "duplicate_of_show_id": plan.duplicate_of_show_id,
    }
