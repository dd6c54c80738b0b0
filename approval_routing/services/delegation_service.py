"""
Delegation Registry: time-bounded transfer of approval authority.

A delegation from A to B lets B act on A's approval steps while it is in
effect (``ApprovalDelegation.is_in_effect``). Grants validate both users
before anything is written; revokes deactivate, never delete.

When a user has several delegations in effect at once, the most
recently created one wins (``created_at`` desc, then id desc) so the
choice never depends on row order in the store.

Usage:
    from approval_routing.services.delegation_service import DelegationRegistry

    registry = DelegationRegistry()
    delegation = registry.grant(from_user_id=3, to_user_id=7, until=end_of_leave)
    registry.revoke(delegation.id)
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, select

from approval_routing.core.exceptions import NotFoundError, ValidationError
from approval_routing.models import db
from approval_routing.models.delegation import ApprovalDelegation
from approval_routing.models.organization import User
from approval_routing.models.workflow import ApprovalStepTemplate
from approval_routing.services.approver_resolver import ApproverResolver
from approval_routing.services.directory import OrganizationDirectory, SqlOrganizationDirectory
from approval_routing.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def _newest_first(delegations: list[ApprovalDelegation]) -> list[ApprovalDelegation]:
    return sorted(
        delegations,
        key=lambda d: (as_utc(d.created_at), d.id or 0),
        reverse=True,
    )


class DelegationRegistry:
    """Grant, revoke and resolve approval delegations."""

    def __init__(
        self,
        directory: OrganizationDirectory | None = None,
        resolver: ApproverResolver | None = None,
    ) -> None:
        self.directory = directory or SqlOrganizationDirectory()
        self.resolver = resolver or ApproverResolver(self.directory)

    # ── Mutations ────────────────────────────────────────────────────────

    def grant(
        self,
        from_user_id: int,
        to_user_id: int,
        until: datetime | None = None,
        reason: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ApprovalDelegation:
        """Create a delegation starting now and running until ``until`` (None = indefinite).

        Raises:
            NotFoundError: either user does not exist.
            ValidationError: delegating to oneself, or ``until`` already passed.
        """
        now = as_utc(now) or utcnow()

        if self.directory.get_user_by_id(from_user_id) is None:
            raise NotFoundError(resource="User", resource_id=from_user_id)
        if self.directory.get_user_by_id(to_user_id) is None:
            raise NotFoundError(resource="User", resource_id=to_user_id)
        if from_user_id == to_user_id:
            raise ValidationError(
                "A user cannot delegate approval authority to themselves.",
                details={"to_user_id": "must differ from from_user_id"},
            )
        if until is not None and as_utc(until) < now:
            raise ValidationError(
                "Delegation end date is already in the past.",
                details={"until": as_utc(until).isoformat()},
            )

        delegation = ApprovalDelegation(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            start_date=now,
            end_date=as_utc(until),
            is_active=True,
            reason=(reason or "").strip() or None,
            created_at=now,
        )
        db.session.add(delegation)
        db.session.commit()

        logger.info(
            "Created approval delegation from %s to %s until %s",
            from_user_id, to_user_id, until.isoformat() if until else "indefinite",
            extra={"delegation_id": delegation.id},
        )
        return delegation

    def revoke(self, delegation_id: int, *, now: datetime | None = None) -> bool:
        """Deactivate a delegation. Returns False when the id is unknown."""
        delegation = db.session.get(ApprovalDelegation, delegation_id)
        if delegation is None:
            return False

        if delegation.is_active:
            delegation.is_active = False
            delegation.revoked_at = as_utc(now) or utcnow()
            db.session.commit()
            logger.info("Removed approval delegation %s", delegation_id, extra={"delegation_id": delegation_id})
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    def _active_rows(self, *, from_user_id=None, to_user_id=None) -> list[ApprovalDelegation]:
        stmt = select(ApprovalDelegation).where(ApprovalDelegation.is_active.is_(True))
        if from_user_id is not None:
            stmt = stmt.where(ApprovalDelegation.from_user_id == from_user_id)
        if to_user_id is not None:
            stmt = stmt.where(ApprovalDelegation.to_user_id == to_user_id)
        return list(db.session.execute(stmt).scalars())

    def effective_delegates_of(self, user_id: int, *, now: datetime | None = None) -> list[User]:
        """Users currently holding delegated authority from ``user_id``, newest grant first."""
        now = as_utc(now) or utcnow()
        in_effect = [d for d in self._active_rows(from_user_id=user_id) if d.is_in_effect(now)]

        delegates: list[User] = []
        seen: set[int] = set()
        for delegation in _newest_first(in_effect):
            if delegation.to_user_id in seen:
                continue
            user = self.directory.get_user_by_id(delegation.to_user_id)
            if user is not None:
                seen.add(user.id)
                delegates.append(user)

        logger.debug("Found %d active delegations for user %s", len(delegates), user_id)
        return delegates

    def delegations_of(
        self, user_id: int, *, now: datetime | None = None,
    ) -> tuple[list[ApprovalDelegation], list[ApprovalDelegation]]:
        """Return (delegations_from, delegations_to) currently in effect for ``user_id``."""
        now = as_utc(now) or utcnow()
        rows = list(
            db.session.execute(
                select(ApprovalDelegation).where(
                    ApprovalDelegation.is_active.is_(True),
                    or_(
                        ApprovalDelegation.from_user_id == user_id,
                        ApprovalDelegation.to_user_id == user_id,
                    ),
                )
            ).scalars()
        )
        in_effect = _newest_first([d for d in rows if d.is_in_effect(now)])
        delegations_from = [d for d in in_effect if d.from_user_id == user_id]
        delegations_to = [d for d in in_effect if d.to_user_id == user_id]
        return delegations_from, delegations_to

    def can_act_for(self, actor_id: int, approver_id: int, *, now: datetime | None = None) -> bool:
        """True when ``actor_id`` is ``approver_id`` or holds a delegation in effect from them."""
        if actor_id == approver_id:
            return True
        return any(u.id == actor_id for u in self.effective_delegates_of(approver_id, now=now))

    def effective_approver(
        self,
        template: ApprovalStepTemplate,
        submitter: User,
        consider_delegation: bool = True,
        *,
        now: datetime | None = None,
    ) -> User | None:
        """Primary approver, replaced by their delegate when one is in effect.

        Substitution is never consulted here; ``RoutingPipeline`` sequences
        the two when both are wanted.
        """
        primary = self.resolver.resolve(template, submitter)
        if primary is None or not consider_delegation:
            return primary

        delegates = self.effective_delegates_of(primary.id, now=now)
        if not delegates:
            return primary

        delegate = delegates[0]
        if delegate.id == submitter.id:
            logger.info("Delegate %s of approver %s submitted the request; keeping primary", delegate.id, primary.id)
            return primary
        logger.debug("Using delegated approver %s instead of primary approver %s", delegate.id, primary.id)
        return delegate
