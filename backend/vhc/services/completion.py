"""Labour/parts completion resolution for repair items and groups.

Two strategies decide whether a group is complete:

* ``group_marker``  - the group itself carries a completion marker or the
  ``no_*_required`` flag. Once set it wins over anything the children say.
* ``all_children``  - every live child is complete (own marker/flag).

Leaves resolve with ``leaf_marker`` (own marker/flag) or inherit the parent's
``group_marker``. ``none`` means no strategy produced a completion.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from .money import to_decimal
from .pricing import pricing_source


COMPLETION_KINDS: tuple[str, ...] = ("labour", "parts")

STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_COMPLETE = "complete"


@dataclass(frozen=True)
class CompletionResolution:
    status: str
    strategy: str
    at: Optional[datetime] = None
    by: Optional[Any] = None

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE


_PENDING = CompletionResolution(status=STATUS_PENDING, strategy="none")


def _check_kind(kind: str) -> None:
    if kind not in COMPLETION_KINDS:
        raise ValueError(f"Unknown completion kind: {kind}")


def live_children(item) -> list:
    return [c for c in (item.children or []) if c.deleted_at is None]


def own_marker(item, kind: str) -> tuple[bool, Optional[datetime], Optional[Any]]:
    """Return (marked, at, by) for the item's own labour or parts marker."""
    _check_kind(kind)
    completed_at = getattr(item, f"{kind}_completed_at")
    if completed_at is not None:
        return True, completed_at, getattr(item, f"{kind}_completed_by_id")
    if getattr(item, f"no_{kind}_required"):
        return True, getattr(item, f"no_{kind}_required_at"), getattr(item, f"no_{kind}_required_by_id")
    return False, None, None


def has_pricing_lines(item, kind: str) -> bool:
    source = pricing_source(item)
    entries = source.labour_entries if kind == "labour" else source.part_entries
    if entries:
        return True
    total = source.labour_total if kind == "labour" else source.parts_total
    return to_decimal(total) > 0


def _resolve_leaf(item, kind: str, parent=None) -> CompletionResolution:
    marked, at, by = own_marker(item, kind)
    if marked:
        return CompletionResolution(status=STATUS_COMPLETE, strategy="leaf_marker", at=at, by=by)
    if parent is not None:
        parent_marked, parent_at, parent_by = own_marker(parent, kind)
        if parent_marked:
            return CompletionResolution(status=STATUS_COMPLETE, strategy="group_marker", at=parent_at, by=parent_by)
    if has_pricing_lines(item, kind):
        return CompletionResolution(status=STATUS_PARTIAL, strategy="none")
    return _PENDING


def latest_resolution(resolutions: Iterable[CompletionResolution]) -> Optional[CompletionResolution]:
    """Most recent completed resolution that carries a timestamp."""
    dated = [r for r in resolutions if r.is_complete and r.at is not None]
    if not dated:
        return None
    return max(dated, key=lambda r: r.at)


def _resolve_group(group, kind: str) -> CompletionResolution:
    marked, at, by = own_marker(group, kind)
    if marked:
        return CompletionResolution(status=STATUS_COMPLETE, strategy="group_marker", at=at, by=by)

    children = live_children(group)
    if not children:
        return _PENDING

    resolutions = [_resolve_leaf(child, kind) for child in children]
    if all(r.is_complete for r in resolutions):
        latest = latest_resolution(resolutions)
        return CompletionResolution(
            status=STATUS_COMPLETE,
            strategy="all_children",
            at=latest.at if latest else None,
            by=latest.by if latest else None,
        )
    if any(r.status != STATUS_PENDING for r in resolutions):
        return CompletionResolution(status=STATUS_PARTIAL, strategy="all_children")
    return _PENDING


def resolve_completion(item, kind: str, *, parent=None) -> CompletionResolution:
    """Resolve labour or parts completion for a group, child or standalone item."""
    _check_kind(kind)
    if item.is_group:
        return _resolve_group(item, kind)
    if parent is None and item.parent_repair_item_id is not None:
        parent = item.parent
    return _resolve_leaf(item, kind, parent=parent)


def is_work_complete(item, *, parent=None) -> bool:
    """Labour and parts both resolved complete."""
    return all(resolve_completion(item, kind, parent=parent).is_complete for kind in COMPLETION_KINDS)


def aggregate_statuses(resolutions: Iterable[CompletionResolution]) -> str:
    """Roll item resolutions up to a badge status."""
    items = list(resolutions)
    if not items:
        return STATUS_PENDING
    if all(r.is_complete for r in items):
        return STATUS_COMPLETE
    if any(r.status != STATUS_PENDING for r in items):
        return STATUS_PARTIAL
    return STATUS_PENDING
