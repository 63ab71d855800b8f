"""
Caller identity and role grants for loan operations.
"""
from __future__ import annotations

from dataclasses import dataclass

from errors import AuthorizationError

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset({
        "create_application",
        "edit_application",
        "delete_records",
        "perform_verification",
        "assess_eligibility",
        "approve_loans",
        "reject_loans",
        "generate_sanction",
        "initiate_disbursement",
        "update_disbursement_status",
        "assign_applications",
        "manage_mandates",
        "collect_payments",
        "import_contacts",
    }),
    "credit_manager": frozenset({
        "create_application",
        "edit_application",
        "perform_verification",
        "assess_eligibility",
        "approve_loans",
        "reject_loans",
        "generate_sanction",
        "assign_applications",
        "import_contacts",
    }),
    "credit_officer": frozenset({
        "create_application",
        "edit_application",
        "perform_verification",
        "assess_eligibility",
        "import_contacts",
    }),
    "disbursement_officer": frozenset({
        "initiate_disbursement",
        "update_disbursement_status",
        "manage_mandates",
        "collect_payments",
    }),
}


@dataclass(frozen=True)
class Actor:
    user_id: str
    org_id: str
    role: str

    def can(self, permission: str) -> bool:
        return permission in ROLE_PERMISSIONS.get(self.role, frozenset())


def require(actor: Actor, permission: str) -> None:
    """Fail closed when the actor's role lacks the permission."""
    if not actor.can(permission):
        raise AuthorizationError(
            f"Role '{actor.role}' is not allowed to {permission.replace('_', ' ')}",
            details={"permission": permission},
        )
