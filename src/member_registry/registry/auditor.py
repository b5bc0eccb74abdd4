"""Consistency audit of the bidirectional member index."""

from collections.abc import Mapping

from member_registry.core.models import AuditIssue, AuditIssueKind, AuditReport, Member


def audit_registry(
    by_subject: Mapping[str, Member], by_external_account: Mapping[str, str]
) -> AuditReport:
    """Validate the store invariants with one pass over each map.

    Checks:
    - every active member is mapped from its external account to itself
    - every mapping targets an existing member
    - no mapping targets an inactive member
    - every mapping key matches its member's external account

    Args:
        by_subject: subject_id -> Member
        by_external_account: external_account_id -> subject_id

    Returns:
        AuditReport; performs no mutation or I/O.
    """
    report = AuditReport(
        member_count=len(by_subject),
        mapping_count=len(by_external_account),
    )

    for subject_id, member in by_subject.items():
        if not member.is_active:
            continue
        mapped = by_external_account.get(member.external_account_id)
        if mapped != subject_id:
            report.errors.append(
                AuditIssue(
                    kind=AuditIssueKind.MISSING_OR_INCORRECT_MAPPING,
                    subject_id=subject_id,
                    external_account_id=member.external_account_id,
                    mapped_subject_id=mapped,
                    reason="mapping_missing" if mapped is None else "mapping_points_elsewhere",
                )
            )

    for external_account_id, subject_id in by_external_account.items():
        member = by_subject.get(subject_id)
        if member is None:
            kind, reason = AuditIssueKind.ORPHANED_MAPPING, "member_not_found"
        elif not member.is_active:
            kind, reason = AuditIssueKind.INACTIVE_MEMBER_MAPPED, "member_inactive"
        elif member.external_account_id != external_account_id:
            kind, reason = AuditIssueKind.EXTERNAL_ACCOUNT_MISMATCH, (
                f"member holds {member.external_account_id}"
            )
        else:
            continue
        report.errors.append(
            AuditIssue(
                kind=kind,
                subject_id=subject_id,
                external_account_id=external_account_id,
                mapped_subject_id=subject_id,
                reason=reason,
            )
        )

    return report
