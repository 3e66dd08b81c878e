# app/services/reconciliation.py
"""
Diff local records against a provider's view of the same resource.

Records are plain dicts sharing a key field (``sku`` for feed items,
``category_id`` for categories). Keys are matched exactly after case
normalization; there is no fuzzy matching here.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.core.enums import SyncOperationType
from app.core.utils import normalize_key, normalize_value

logger = logging.getLogger(__name__)


@dataclass
class SyncOperation:
    """One create/update/delete to apply against the provider."""
    op_type: SyncOperationType
    key: str
    record: Optional[Dict[str, Any]] = None      # desired state (create/update)
    external: Optional[Dict[str, Any]] = None    # provider state (update/delete)
    changed_fields: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.op_type.value}:{self.key}"


@dataclass
class SyncDiff:
    to_create: List[SyncOperation] = field(default_factory=list)
    to_update: List[SyncOperation] = field(default_factory=list)
    to_delete: List[SyncOperation] = field(default_factory=list)
    unchanged: int = 0

    @property
    def operations(self) -> List[SyncOperation]:
        """Creates, then updates, then deletes."""
        return [*self.to_create, *self.to_update, *self.to_delete]

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)

    def summary(self) -> Dict[str, int]:
        return {
            "to_create": len(self.to_create),
            "to_update": len(self.to_update),
            "to_delete": len(self.to_delete),
            "unchanged": self.unchanged,
        }


def _index(records: Iterable[Dict[str, Any]], key_field: str, side: str) -> Dict[str, Dict[str, Any]]:
    indexed: Dict[str, Dict[str, Any]] = {}
    for record in records:
        key = normalize_key(record.get(key_field))
        if not key:
            logger.warning(f"Skipping {side} record without '{key_field}': {record!r}")
            continue
        if key in indexed:
            logger.warning(f"Duplicate {side} key '{key}', keeping the last occurrence")
        indexed[key] = record
    return indexed


def changed_fields(
    local: Dict[str, Any],
    remote: Dict[str, Any],
    compared_fields: Sequence[str],
    optional_fields: Sequence[str] = (),
) -> List[str]:
    """
    Names of compared fields whose normalized values differ.

    Fields in ``optional_fields`` are only compared when the local record
    sets them; the remote side may fill them in on its own.
    """
    changes = []
    for name in compared_fields:
        mine = normalize_value(local.get(name))
        if mine is None and name in optional_fields:
            continue
        if mine != normalize_value(remote.get(name)):
            changes.append(name)
    return changes


def compute_diff(
    local_records: Iterable[Dict[str, Any]],
    remote_records: Iterable[Dict[str, Any]],
    key_field: str,
    compared_fields: Sequence[str],
    target_key: Optional[str] = None,
    optional_fields: Sequence[str] = (),
) -> SyncDiff:
    """
    Classify every key into create, update, delete or unchanged.

    - local only: create
    - remote only: delete
    - both, with a compared field differing: update
    - both, all compared fields equal: unchanged

    With ``target_key`` set only that key is considered, so a single-record
    job can never delete unrelated records.
    """
    local = _index(local_records, key_field, "local")
    remote = _index(remote_records, key_field, "remote")

    if target_key is not None:
        wanted = normalize_key(target_key)
        local = {k: v for k, v in local.items() if k == wanted}
        remote = {k: v for k, v in remote.items() if k == wanted}

    diff = SyncDiff()
    for key in sorted(local):
        record = local[key]
        existing = remote.get(key)
        if existing is None:
            diff.to_create.append(SyncOperation(SyncOperationType.CREATE, key, record=record))
            continue
        changes = changed_fields(record, existing, compared_fields, optional_fields)
        if changes:
            diff.to_update.append(
                SyncOperation(SyncOperationType.UPDATE, key, record=record, external=existing, changed_fields=changes)
            )
        else:
            diff.unchanged += 1

    for key in sorted(remote):
        if key not in local:
            diff.to_delete.append(SyncOperation(SyncOperationType.DELETE, key, external=remote[key]))

    logger.debug(f"Computed diff: {diff.summary()}")
    return diff
