from dataclasses import dataclass, field
from typing import List, Tuple
from .models import AppRole, ApplicationTarget, OptimalPermission, ServicePrincipal


@dataclass
class OptimalSetResolution:
    """
    Outcome of mapping an application's optimal permission names onto the live role catalog.

    - matched: (permission, role) pairs found by an exact value/alias/displayName match
    - fuzzy: (permission, candidates) pairs only found by substring; the operator must pick
    - missing: permissions with no candidate at all
    """

    matched: List[Tuple[OptimalPermission, AppRole]] = field(default_factory=list)
    fuzzy: List[Tuple[OptimalPermission, List[AppRole]]] = field(default_factory=list)
    missing: List[OptimalPermission] = field(default_factory=list)

    @property
    def roles(self) -> List[AppRole]:
        return [role for _, role in self.matched]


def enabled_roles(sp: ServicePrincipal) -> List[AppRole]:
    return sorted(sp.enabled_roles(), key=lambda r: (r.value or r.display_name).lower())


def _eq(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def match_permission(permission: OptimalPermission, roles: List[AppRole]) -> Tuple[str, List[AppRole]]:
    """
    Resolve one permission name, returning ("exact" | "fuzzy" | "missing", roles).

    Precedence: value, then alias, then displayName, then substring on value/displayName.
    """
    for role in roles:
        if _eq(role.value, permission.name):
            return "exact", [role]
    for alias in permission.aliases:
        for role in roles:
            if _eq(role.value, alias) or _eq(role.display_name, alias):
                return "exact", [role]
    for role in roles:
        if _eq(role.display_name, permission.name):
            return "exact", [role]

    needles = [n.lower() for n in [permission.name, *permission.aliases] if n]
    candidates = [
        role
        for role in roles
        if any(n in (role.value or "").lower() or n in (role.display_name or "").lower() for n in needles)
    ]
    if candidates:
        return "fuzzy", candidates
    return "missing", []


def resolve_optimal_set(sp: ServicePrincipal, target: ApplicationTarget) -> OptimalSetResolution:
    roles = enabled_roles(sp)
    resolution = OptimalSetResolution()
    seen = set()
    for permission in target.optimal_permissions:
        kind, found = match_permission(permission, roles)
        if kind == "exact":
            if found[0].id in seen:
                continue
            seen.add(found[0].id)
            resolution.matched.append((permission, found[0]))
        elif kind == "fuzzy":
            resolution.fuzzy.append((permission, found))
        else:
            resolution.missing.append(permission)
    return resolution


def find_roles(sp: ServicePrincipal, text: str) -> List[AppRole]:
    needle = (text or "").strip().lower()
    roles = enabled_roles(sp)
    if not needle:
        return roles
    return [
        r
        for r in roles
        if needle in r.value.lower() or needle in r.display_name.lower() or needle in r.description.lower()
    ]
