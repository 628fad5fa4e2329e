import logging
from typing import List, Optional, Tuple
import requests
from . import console
from .directory import DirectoryService
from .graph_client import GraphAPIError
from .models import (
    AppRole,
    Counters,
    ItemResult,
    Principal,
    RunContext,
    ServicePrincipal,
    FAILED,
    GRANT,
    REVOKE,
    SKIPPED,
    SUCCESS,
)

# ---------- Error text patterns, for operator hints only ----------
_FAILURE_PATTERNS = [
    (
        "unauthorized",
        ("unauthorized", "invalidauthenticationtoken", "token is expired", "lifetime validation failed"),
        "The session token was rejected; sign in again.",
    ),
    (
        "permission",
        ("forbidden", "authorization_requestdenied", "insufficient privileges", "access denied"),
        "The signed-in account lacks rights to manage app role assignments (needs AppRoleAssignment.ReadWrite.All).",
    ),
    (
        "conflict",
        ("conflict", "already exists"),
        "An equivalent assignment already exists.",
    ),
    (
        "not_found",
        ("request_resourcenotfound", "does not exist", "not found"),
        "The principal, role or assignment no longer exists in the directory.",
    ),
]


_STATUS_KINDS = {401: "unauthorized", 403: "permission", 404: "not_found", 409: "conflict"}


def classify_failure(text: str, status_code: Optional[int] = None) -> Tuple[str, str]:
    """Guess the cause of a failed call from its status and error text. Display-only."""
    hints = {kind: hint for kind, _, hint in _FAILURE_PATTERNS}
    if status_code in _STATUS_KINDS:
        kind = _STATUS_KINDS[status_code]
        return kind, hints[kind]
    lowered = (text or "").lower()
    for kind, needles, hint in _FAILURE_PATTERNS:
        if any(n in lowered for n in needles):
            return kind, hint
    return "unknown", "See the log file for the full error."


def _reraise_unauthorized(e: Exception) -> None:
    # a dead token would fail every remaining item; stop the batch instead
    if isinstance(e, GraphAPIError) and e.unauthorized:
        raise e


class Reconciler:
    def __init__(self, directory: DirectoryService, ctx: RunContext):
        self.directory = directory
        self.ctx = ctx

    def _existing(self, principal: Principal, sp: ServicePrincipal, role: AppRole):
        return [
            a
            for a in self.directory.list_assignments(principal, sp.id)
            if a.principal_id == principal.id and a.app_role_id == role.id
        ]

    def _failed(self, principal: Principal, role: AppRole, action: str, e: Exception) -> ItemResult:
        kind, hint = classify_failure(str(e), getattr(e, "status_code", None))
        console.error(
            f"{action.capitalize()} {role.label} for {principal.label} failed ({kind}): {hint}",
            self.ctx,
            detail=getattr(e, "text", None) or str(e),
        )
        return ItemResult(principal, role, action, FAILED, detail=str(e), error_kind=kind)

    def grant(self, principal: Principal, sp: ServicePrincipal, role: AppRole) -> ItemResult:
        try:
            if self._existing(principal, sp, role):
                console.info(f"{principal.label} already has {role.label}; skipping")
                return ItemResult(principal, role, GRANT, SKIPPED, detail="already granted")
            assignment = self.directory.create_assignment(principal.id, sp.id, role.id)
        except (GraphAPIError, requests.RequestException) as e:
            _reraise_unauthorized(e)
            return self._failed(principal, role, GRANT, e)
        logging.info(
            f"Created assignment {assignment.id} principal={principal.id} resource={sp.id} appRole={role.id}"
        )
        console.ok(f"Granted {role.label} to {principal.label}")
        return ItemResult(principal, role, GRANT, SUCCESS, detail=assignment.id)

    def revoke(self, principal: Principal, sp: ServicePrincipal, role: AppRole) -> ItemResult:
        try:
            existing = self._existing(principal, sp, role)
            if not existing:
                console.info(f"{principal.label} does not have {role.label}; skipping")
                return ItemResult(principal, role, REVOKE, SKIPPED, detail="not assigned")
            for assignment in existing:
                try:
                    self.directory.delete_assignment(sp.id, assignment.id)
                except GraphAPIError as e:
                    if e.status_code != 404:
                        raise
                    logging.info(f"Assignment {assignment.id} was already gone")
                logging.info(f"Deleted assignment {assignment.id} principal={principal.id} appRole={role.id}")
        except (GraphAPIError, requests.RequestException) as e:
            _reraise_unauthorized(e)
            return self._failed(principal, role, REVOKE, e)
        console.ok(f"Revoked {role.label} from {principal.label}")
        return ItemResult(principal, role, REVOKE, SUCCESS, detail=",".join(a.id for a in existing))

    def apply(
        self,
        principals: List[Principal],
        sp: ServicePrincipal,
        roles: List[AppRole],
        action: str,
    ) -> Counters:
        """Run every (principal, role) pair; only a rejected token (401) stops the batch early."""
        if action not in (GRANT, REVOKE):
            raise ValueError(f"Unknown action: {action}")
        step = self.grant if action == GRANT else self.revoke
        batch = Counters()
        for principal in principals:
            console.header(f"{principal.label}")
            for role in roles:
                result = step(principal, sp, role)
                self.ctx.record(result)
                batch.add(result.outcome)
        logging.info(
            f"Batch {action} on {sp.display_name}: success={batch.success} skipped={batch.skipped} failed={batch.failed}"
        )
        return batch
