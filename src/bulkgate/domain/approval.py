"""Approval gate between reconciliation and commit."""

import logging
from dataclasses import replace
from typing import Any

from bulkgate.domain import errors
from bulkgate.domain.entities import (
    ApprovalCategory,
    ApprovalState,
    ApprovedChanges,
    IssueCategory,
    IssueSeverity,
    ReconciliationResult,
    ValidationIssue,
)
from bulkgate.domain.errors import NothingApprovedError
from bulkgate.domain.fields import ITEM_REFERENCE, EntityType

log = logging.getLogger(__name__)


class ApprovalGate:
    """Filter classified changes down to what an operator approved.

    The gate keeps no state of its own. Every operation takes an
    ``ApprovalState`` and returns a new one.
    """

    def initial_state(self, reconciliation: ReconciliationResult, approved: bool = False) -> ApprovalState:
        """Build a state holding one decision per classified key.

        Args:
            reconciliation: Classified sets to decide on
            approved: Initial decision for every key

        Returns:
            ApprovalState covering all four categories
        """
        return ApprovalState(
            **{
                category.value: {key: approved for key in reconciliation.keys(category)}
                for category in ApprovalCategory
            }
        )

    def set_decision(
        self, state: ApprovalState, category: ApprovalCategory, key: Any, approved: bool
    ) -> ApprovalState:
        """Return a copy of the state with one key decided."""
        decisions = dict(state.decisions(category))
        decisions[key] = approved
        return replace(state, **{category.value: decisions})

    def toggle(self, state: ApprovalState, category: ApprovalCategory, key: Any) -> ApprovalState:
        """Return a copy of the state with one key's decision flipped."""
        return self.set_decision(state, category, key, not state.is_approved(category, key))

    def approve_all(
        self, state: ApprovalState, reconciliation: ReconciliationResult, category: ApprovalCategory
    ) -> ApprovalState:
        """Return a copy of the state approving every key in a category."""
        return replace(state, **{category.value: {key: True for key in reconciliation.keys(category)}})

    def reject_all(
        self, state: ApprovalState, reconciliation: ReconciliationResult, category: ApprovalCategory
    ) -> ApprovalState:
        """Return a copy of the state rejecting every key in a category."""
        return replace(state, **{category.value: {key: False for key in reconciliation.keys(category)}})

    def submit(self, reconciliation: ReconciliationResult, state: ApprovalState) -> ApprovedChanges:
        """Intersect the classified sets with the operator's decisions.

        An approved new item whose organization is new in this batch but was
        not approved is dropped, since it would reference nothing.

        Args:
            reconciliation: Classified sets
            state: Operator decisions

        Returns:
            ApprovedChanges holding only approved entities

        Raises:
            NothingApprovedError: If no entity in any category was approved
        """
        new_organizations = [
            entity
            for entity in reconciliation.new_organizations
            if state.is_approved(ApprovalCategory.NEW_ORGANIZATIONS, entity.key)
        ]
        changed_organizations = [
            detail
            for detail in reconciliation.changed_organizations
            if state.is_approved(ApprovalCategory.CHANGED_ORGANIZATIONS, detail.key)
        ]
        changed_items = [
            detail
            for detail in reconciliation.changed_items
            if state.is_approved(ApprovalCategory.CHANGED_ITEMS, detail.key)
        ]

        pending_organizations = {entity.key for entity in reconciliation.new_organizations}
        approved_organizations = {entity.key for entity in new_organizations}
        issues: list[ValidationIssue] = []
        new_items = []
        for entity in reconciliation.new_items:
            if not state.is_approved(ApprovalCategory.NEW_ITEMS, entity.key):
                continue
            reference = entity.get(ITEM_REFERENCE)
            if reference in pending_organizations and reference not in approved_organizations:
                issues.append(
                    ValidationIssue(
                        category=IssueCategory.REFERENCE,
                        severity=IssueSeverity.ERROR,
                        code="UNAPPROVED_REFERENCE",
                        message=errors.unapproved_reference(entity.key, reference),
                        entity_type=EntityType.ITEM,
                        key=entity.key,
                        field=ITEM_REFERENCE,
                        row_number=entity.row_number,
                    )
                )
                continue
            new_items.append(entity)

        approved = ApprovedChanges(
            new_organizations=new_organizations,
            changed_organizations=changed_organizations,
            new_items=new_items,
            changed_items=changed_items,
            issues=issues,
            mode=reconciliation.mode,
        )
        if approved.total == 0:
            raise NothingApprovedError("Nothing was approved; there is nothing to commit")

        log.info(
            "Approved %d of %d classified changes",
            approved.total,
            sum(len(reconciliation.keys(category)) for category in ApprovalCategory),
        )
        return approved
