"""Manifest lifecycle management with state machine validation.

Lifecycle:
    draft -> pending_verification (optional) -> confirmed -> processing -> processed

confirm() is the normal path into confirmed; release_claim() returns a
manifest whose run died mid-way. The confirmed -> processing ->
processed transitions are owned by the batch processor, which claims the
manifest atomically; they are listed here so the whole lifecycle lives
in one table.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from reconciler.db.models import (
    Manifest,
    ManifestItem,
    ManifestItemStatus,
    ManifestStatus,
    ManifestType,
    utc_now_iso,
)
from reconciler.errors import ConflictError, InvalidStateTransition, NotFoundError
from reconciler.services.audit_service import build_audit_entry

logger = logging.getLogger(__name__)


# Valid state transitions for manifest lifecycle
VALID_TRANSITIONS: dict[ManifestStatus, list[ManifestStatus]] = {
    ManifestStatus.draft: [ManifestStatus.pending_verification, ManifestStatus.confirmed],
    ManifestStatus.pending_verification: [ManifestStatus.confirmed],
    ManifestStatus.confirmed: [ManifestStatus.processing],
    # processing -> confirmed releases the claim after an aborted run
    ManifestStatus.processing: [ManifestStatus.processed, ManifestStatus.confirmed],
    ManifestStatus.processed: [],  # terminal
}


@dataclass
class ManifestSummary:
    """A manifest with its per-status item counts."""

    manifest: Manifest
    item_count: int = 0
    processed_count: int = 0
    error_count: int = 0
    pending_count: int = 0


class ManifestService:
    """Service for manifest lifecycle transitions and queries.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def can_transition(self, current: ManifestStatus, target: ManifestStatus) -> bool:
        return target in VALID_TRANSITIONS.get(current, [])

    def _require(self, manifest_id: str) -> Manifest:
        manifest = self.get_manifest(manifest_id)
        if manifest is None:
            raise NotFoundError("Manifest", manifest_id)
        return manifest

    def _check_transition(self, manifest: Manifest, target: ManifestStatus) -> None:
        current = ManifestStatus(manifest.status)
        if not self.can_transition(current, target):
            raise InvalidStateTransition(
                "Manifest", current, target, VALID_TRANSITIONS.get(current, [])
            )

    def get_manifest(self, manifest_id: str) -> Manifest | None:
        return self.db.query(Manifest).filter(Manifest.id == manifest_id).first()

    def submit_for_verification(self, manifest_id: str) -> Manifest:
        """Move a draft manifest to pending_verification.

        Raises:
            NotFoundError: If the manifest does not exist.
            InvalidStateTransition: If the manifest is not a draft.
        """
        manifest = self._require(manifest_id)
        self._check_transition(manifest, ManifestStatus.pending_verification)
        manifest.status = ManifestStatus.pending_verification.value
        self.db.commit()
        self.db.refresh(manifest)
        return manifest

    def confirm(self, manifest_id: str, actor_id: str) -> Manifest:
        """Confirm a manifest so it can be processed.

        Valid from draft or pending_verification. Records who confirmed it
        and when, with an audit entry in the same transaction.

        Args:
            manifest_id: Manifest to confirm.
            actor_id: Confirming user.

        Returns:
            The confirmed Manifest.

        Raises:
            NotFoundError: If the manifest does not exist.
            InvalidStateTransition: If the manifest is past confirmation.
        """
        manifest = self._require(manifest_id)
        self._check_transition(manifest, ManifestStatus.confirmed)

        previous = manifest.status
        manifest.status = ManifestStatus.confirmed.value
        manifest.confirmed_at = utc_now_iso()
        manifest.confirmed_by = actor_id
        self.db.add(
            build_audit_entry(
                actor_id,
                "manifest.confirmed",
                "Manifest",
                manifest.id,
                {"from_status": previous, "type": manifest.type},
            )
        )
        self.db.commit()
        self.db.refresh(manifest)
        logger.info("Manifest %s confirmed by %s", manifest_id, actor_id)
        return manifest

    def release_claim(
        self, manifest_id: str, actor_id: str, min_age_minutes: int = 30
    ) -> Manifest:
        """Return a manifest stuck in processing to confirmed.

        Recovers a manifest whose run died without releasing its claim.
        Items keep their statuses; a new run skips invoices that were
        already settled.

        Args:
            manifest_id: Manifest to release.
            actor_id: Operator releasing the claim.
            min_age_minutes: Refuse claims younger than this, since their
                run may still be active. 0 releases unconditionally.

        Raises:
            NotFoundError: If the manifest does not exist.
            InvalidStateTransition: If the manifest is not processing.
            ConflictError: If the claim is too recent or changed meanwhile.
        """
        manifest = self._require(manifest_id)
        current = ManifestStatus(manifest.status)
        if current != ManifestStatus.processing:
            raise InvalidStateTransition(
                "Manifest",
                current,
                ManifestStatus.confirmed,
                VALID_TRANSITIONS.get(current, []),
                reason="only a processing manifest holds a claim",
            )

        started_at = manifest.processing_started_at
        if started_at and min_age_minutes > 0:
            age = datetime.now(UTC) - datetime.fromisoformat(started_at)
            if age < timedelta(minutes=min_age_minutes):
                raise ConflictError(
                    f"Manifest '{manifest_id}' was claimed {int(age.total_seconds() // 60)} "
                    f"minute(s) ago and its run may still be active"
                )

        result = self.db.execute(
            update(Manifest)
            .where(
                Manifest.id == manifest_id,
                Manifest.status == ManifestStatus.processing.value,
                Manifest.processing_started_at == started_at,
            )
            .values(status=ManifestStatus.confirmed.value, processing_started_at=None)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError(f"Manifest '{manifest_id}' changed state while releasing")

        self.db.add(
            build_audit_entry(
                actor_id,
                "manifest.claim_released",
                "Manifest",
                manifest_id,
                {"claimed_at": started_at},
            )
        )
        self.db.commit()
        self.db.refresh(manifest)
        logger.warning(
            "Manifest %s claim from %s released by %s", manifest_id, started_at, actor_id
        )
        return manifest

    def list_manifests(
        self,
        manifest_type: ManifestType | None = None,
        status: ManifestStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ManifestSummary]:
        """List manifests, newest first, with item counts.

        Args:
            manifest_type: Filter by manifest type (optional).
            status: Filter by manifest status (optional).
            limit: Maximum number of manifests to return (default 50).
            offset: Number of manifests to skip for pagination (default 0).

        Returns:
            List of ManifestSummary objects.
        """
        query = self.db.query(Manifest)
        if manifest_type is not None:
            query = query.filter(Manifest.type == manifest_type.value)
        if status is not None:
            query = query.filter(Manifest.status == status.value)
        manifests = (
            query.order_by(Manifest.created_at.desc()).limit(limit).offset(offset).all()
        )
        if not manifests:
            return []

        counts = self._item_counts([m.id for m in manifests])
        return [
            ManifestSummary(manifest=m, **counts.get(m.id, {})) for m in manifests
        ]

    def get_summary(self, manifest_id: str) -> ManifestSummary:
        """Get one manifest with its item counts.

        Raises:
            NotFoundError: If the manifest does not exist.
        """
        manifest = self._require(manifest_id)
        counts = self._item_counts([manifest.id])
        return ManifestSummary(manifest=manifest, **counts.get(manifest.id, {}))

    def _item_counts(self, manifest_ids: list[str]) -> dict[str, dict[str, int]]:
        def _count_status(status: ManifestItemStatus):
            return func.sum(case((ManifestItem.status == status.value, 1), else_=0))

        rows = (
            self.db.query(
                ManifestItem.manifest_id,
                func.count(ManifestItem.id),
                _count_status(ManifestItemStatus.processed),
                _count_status(ManifestItemStatus.error),
                _count_status(ManifestItemStatus.pending),
            )
            .filter(ManifestItem.manifest_id.in_(manifest_ids))
            .group_by(ManifestItem.manifest_id)
            .all()
        )
        return {
            manifest_id: {
                "item_count": total or 0,
                "processed_count": processed or 0,
                "error_count": errors or 0,
                "pending_count": pending or 0,
            }
            for manifest_id, total, processed, errors, pending in rows
        }
