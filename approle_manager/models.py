from dataclasses import dataclass, field
from typing import Dict, List, Optional

SUCCESS = "success"
SKIPPED = "skipped"
FAILED = "failed"

GRANT = "grant"
REVOKE = "revoke"

USER = "user"
GROUP = "group"


@dataclass
class Principal:
    id: str
    display_name: str
    user_principal_name: str = ""
    sam_account_name: Optional[str] = None
    account_enabled: Optional[bool] = None
    kind: str = USER

    @classmethod
    def from_graph(cls, obj: Dict, kind: Optional[str] = None) -> "Principal":
        if kind is None:
            odata_type = (obj.get("@odata.type") or "").lower()
            kind = GROUP if odata_type.endswith(".group") else USER
        return cls(
            id=obj["id"],
            display_name=obj.get("displayName") or "",
            user_principal_name=obj.get("userPrincipalName") or obj.get("mail") or "",
            sam_account_name=obj.get("onPremisesSamAccountName"),
            account_enabled=obj.get("accountEnabled"),
            kind=kind,
        )

    @property
    def label(self) -> str:
        if self.user_principal_name:
            return f"{self.display_name} ({self.user_principal_name})"
        return self.display_name or self.id


@dataclass
class AppRole:
    id: str
    display_name: str
    value: str
    description: str = ""
    is_enabled: bool = True
    allowed_member_types: List[str] = field(default_factory=list)

    @classmethod
    def from_graph(cls, obj: Dict) -> "AppRole":
        return cls(
            id=obj["id"],
            display_name=obj.get("displayName") or "",
            value=obj.get("value") or "",
            description=obj.get("description") or "",
            is_enabled=bool(obj.get("isEnabled", True)),
            allowed_member_types=list(obj.get("allowedMemberTypes") or []),
        )

    @property
    def label(self) -> str:
        return self.value or self.display_name or self.id


@dataclass
class ServicePrincipal:
    id: str
    app_id: str
    display_name: str
    app_roles: List[AppRole] = field(default_factory=list)

    @classmethod
    def from_graph(cls, obj: Dict) -> "ServicePrincipal":
        return cls(
            id=obj["id"],
            app_id=obj.get("appId") or "",
            display_name=obj.get("displayName") or "",
            app_roles=[AppRole.from_graph(r) for r in obj.get("appRoles") or []],
        )

    def enabled_roles(self) -> List[AppRole]:
        return [r for r in self.app_roles if r.is_enabled]


@dataclass
class AppRoleAssignment:
    id: str
    principal_id: str
    resource_id: str
    app_role_id: str
    principal_display_name: str = ""

    @classmethod
    def from_graph(cls, obj: Dict) -> "AppRoleAssignment":
        return cls(
            id=obj["id"],
            principal_id=obj.get("principalId") or "",
            resource_id=obj.get("resourceId") or "",
            app_role_id=obj.get("appRoleId") or "",
            principal_display_name=obj.get("principalDisplayName") or "",
        )


@dataclass
class OptimalPermission:
    name: str
    aliases: List[str] = field(default_factory=list)


@dataclass
class ApplicationTarget:
    name: str
    service_principal_name: str
    description: str = ""
    optimal_permissions: List[OptimalPermission] = field(default_factory=list)


@dataclass
class ItemResult:
    principal: Principal
    role: AppRole
    action: str
    outcome: str
    detail: str = ""
    error_kind: Optional[str] = None


@dataclass
class Counters:
    success: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.failed

    def add(self, outcome: str) -> None:
        if outcome == SUCCESS:
            self.success += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        elif outcome == FAILED:
            self.failed += 1
        else:
            raise ValueError(f"Unknown outcome: {outcome}")


@dataclass
class ResolutionPolicy:
    """
    Behaviours that differed between historical revisions of the workflow.

    - confirm_single_match: ask before auto-selecting a lone search hit
    - retry_on_no_match: re-prompt for a new query when nothing matched
    - scan_size: how many principals the client-side fallback scan fetches
    - broaden_search: always run the fallback scan, not only when the prefix query is empty
    - assume_yes: accept confirmations without asking
    """

    confirm_single_match: bool = True
    retry_on_no_match: bool = True
    scan_size: int = 100
    broaden_search: bool = False
    assume_yes: bool = False


@dataclass
class RunContext:
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    log_path: Optional[str] = None
    counters: Counters = field(default_factory=Counters)
    per_principal: Dict[str, Counters] = field(default_factory=dict)
    results: List[ItemResult] = field(default_factory=list)
    warning_count: int = 0
    error_count: int = 0

    def record(self, result: ItemResult) -> None:
        self.results.append(result)
        self.counters.add(result.outcome)
        self.per_principal.setdefault(result.principal.id, Counters()).add(result.outcome)

    def failures(self) -> List[ItemResult]:
        return [r for r in self.results if r.outcome == FAILED]
