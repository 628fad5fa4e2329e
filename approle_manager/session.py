import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from . import console
from .catalog import APPLICATION_TARGETS, get_target
from .directory import DirectoryService
from .graph_client import GraphAPIError
from .models import (
    AppRole,
    ApplicationTarget,
    Counters,
    OptimalPermission,
    Principal,
    RunContext,
    ServicePrincipal,
    GRANT,
    GROUP,
    REVOKE,
    USER,
)
from .principal_resolver import CsvImportError, PrincipalResolver, dedupe
from .prompts import CANCEL, Prompter
from .reconciler import Reconciler
from .report import print_summary
from .role_resolver import enabled_roles, find_roles, match_permission, resolve_optimal_set

SOURCE_USERS = "Search for users"
SOURCE_GROUPS = "Search for groups (assign to the group itself)"
SOURCE_GROUP_MEMBERS = "Expand a security group's user members"
SOURCE_CSV = "Import users from a CSV file"

MODE_SINGLE = "Single permission"
MODE_MULTIPLE = "Multiple permissions"
PREVIEW_LIMIT = 20


@dataclass
class Preset:
    """Answers supplied on the command line; any left empty are asked interactively."""

    app: Optional[str] = None
    action: Optional[str] = None
    users: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    group_members: Optional[str] = None
    csv_path: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    optimal: bool = False

    @property
    def has_principals(self) -> bool:
        return bool(self.users or self.groups or self.group_members or self.csv_path)

    @property
    def any(self) -> bool:
        return bool(self.app or self.action or self.has_principals or self.roles or self.optimal)


def _reraise_auth(e: GraphAPIError) -> None:
    # an expired token or missing consent is fatal, not a resolution failure
    if e.auth_failure:
        raise e


class PermissionSession:
    def __init__(
        self,
        directory: DirectoryService,
        ctx: RunContext,
        prompter: Optional[Prompter] = None,
        preset: Optional[Preset] = None,
    ):
        self.directory = directory
        self.ctx = ctx
        self.prompter = prompter or Prompter()
        self.preset = preset or Preset()
        self.resolver = PrincipalResolver(directory, ctx)
        self.reconciler = Reconciler(directory, ctx)

    @property
    def assume_yes(self) -> bool:
        return self.ctx.policy.assume_yes

    def run(self) -> RunContext:
        while True:
            self.run_once()
            if self.preset.any or self.assume_yes:
                break
            if not self.prompter.confirm("\nRun another operation?", default=False):
                break
        print_summary(self.ctx)
        return self.ctx

    def run_once(self) -> Optional[Counters]:
        target, sp = self.select_target()
        if sp is None:
            return None

        action = self.select_action()
        if action is None:
            return None

        principals = self.select_principals()
        if not principals:
            console.warn("No principals selected; nothing to do", self.ctx)
            return None

        roles = self.select_roles(target, sp)
        if not roles:
            console.warn("No permissions selected; nothing to do", self.ctx)
            return None

        if not self.confirm_batch(action, target, sp, principals, roles):
            console.warn("Operation cancelled before any change was made", self.ctx)
            return None

        return self.reconciler.apply(principals, sp, roles, action)

    # --------------------------------------------------------
    # Target resolution
    # --------------------------------------------------------
    def select_target(self) -> Tuple[Optional[ApplicationTarget], Optional[ServicePrincipal]]:
        while True:
            if self.preset.app:
                target = get_target(self.preset.app)
                if target is None:
                    names = ", ".join(t.name for t in APPLICATION_TARGETS)
                    console.error(f"Unknown application '{self.preset.app}' (choose from {names})", self.ctx)
                    return None, None
            else:
                idx = self.prompter.choose_one(
                    "Select the target application:",
                    [f"{t.name} - {t.description}" for t in APPLICATION_TARGETS],
                )
                if idx is CANCEL:
                    return None, None
                target = APPLICATION_TARGETS[idx]

            console.info(f"Looking up service principal '{target.service_principal_name}'")
            try:
                sp = self.directory.find_service_principal(target.service_principal_name)
            except GraphAPIError as e:
                _reraise_auth(e)
                console.error(f"Service principal lookup failed for {target.name}", self.ctx, detail=str(e))
                sp = None

            if sp is not None:
                console.ok(f"{target.name}: {sp.display_name} ({sp.id}), {len(sp.enabled_roles())} enabled roles")
                return target, sp

            console.warn(f"Service principal '{target.service_principal_name}' not found in this tenant", self.ctx)
            if self.preset.app:
                return target, None

    def select_action(self) -> Optional[str]:
        if self.preset.action:
            return self.preset.action
        idx = self.prompter.choose_one("Select the operation:", ["Grant permissions", "Revoke permissions"])
        if idx is CANCEL:
            return None
        return (GRANT, REVOKE)[idx]

    # --------------------------------------------------------
    # Principal resolution
    # --------------------------------------------------------
    def select_principals(self) -> List[Principal]:
        try:
            if self.preset.has_principals:
                return self._preset_principals()
            sources = [SOURCE_USERS, SOURCE_GROUPS, SOURCE_GROUP_MEMBERS, SOURCE_CSV]
            idx = self.prompter.choose_one("Who should the permissions apply to?", sources)
            if idx is CANCEL:
                return []
            source = sources[idx]
            if source == SOURCE_USERS:
                return self._search_loop(USER)
            if source == SOURCE_GROUPS:
                return self._search_loop(GROUP)
            if source == SOURCE_GROUP_MEMBERS:
                query = self.prompter.ask("Group name to expand")
                return [] if query is CANCEL else self._group_members(query)
            path = self.prompter.ask("Path to the CSV file")
            return [] if path is CANCEL else self._from_csv(path)
        except GraphAPIError as e:
            _reraise_auth(e)
            console.error("Principal lookup failed", self.ctx, detail=str(e))
            return []

    def _preset_principals(self) -> List[Principal]:
        chosen: List[Principal] = []
        for query in self.preset.users:
            chosen.extend(self.resolver.resolve(query, self.prompter, allow_multiple=True, kind=USER))
        for query in self.preset.groups:
            chosen.extend(self.resolver.resolve(query, self.prompter, allow_multiple=True, kind=GROUP))
        if self.preset.group_members:
            chosen.extend(self._group_members(self.preset.group_members))
        if self.preset.csv_path:
            chosen.extend(self._from_csv(self.preset.csv_path))
        return dedupe(chosen)

    def _search_loop(self, kind: str) -> List[Principal]:
        chosen: List[Principal] = []
        while True:
            query = self.prompter.ask(f"Search {kind}s (name, UPN or account name)")
            if query is CANCEL:
                break
            chosen.extend(self.resolver.resolve(query, self.prompter, allow_multiple=True, kind=kind))
            chosen = dedupe(chosen)
            if not self.prompter.confirm(f"{len(chosen)} selected. Add more {kind}s?", default=False):
                break
        return chosen

    def _group_members(self, query: str) -> List[Principal]:
        groups = self.resolver.resolve(query, self.prompter, allow_multiple=False, kind=GROUP)
        if not groups:
            return []
        return self.resolver.expand_group_members(groups[0])

    def _from_csv(self, path: str) -> List[Principal]:
        try:
            result = self.resolver.import_csv(path)
        except (OSError, CsvImportError) as e:
            console.error(f"Cannot import {path}: {e}", self.ctx)
            return []
        if result.skipped_rows:
            console.info(f"Ignored {result.skipped_rows} blank row(s)")
        if result.not_found:
            console.warn("Not found in the directory:", self.ctx)
            for key in result.not_found:
                print(f"    {key}")
            logging.warning(f"CSV not found list: {', '.join(result.not_found)}")
        if result.failed:
            console.warn("Lookup failed (see the log for the errors):", self.ctx)
            for key in result.failed:
                print(f"    {key}")
        if result.not_found or result.failed:
            if result.principals and not self.assume_yes:
                if not self.prompter.confirm(f"Continue with the {len(result.principals)} resolved user(s)?", default=True):
                    return []
        console.ok(f"Resolved {len(result.principals)} user(s) from {path}")
        return result.principals

    # --------------------------------------------------------
    # Permission catalog resolution
    # --------------------------------------------------------
    def select_roles(self, target: ApplicationTarget, sp: ServicePrincipal) -> List[AppRole]:
        if not enabled_roles(sp):
            console.warn(f"{sp.display_name} exposes no enabled app roles", self.ctx)
            return []
        if self.preset.optimal:
            return self._optimal_roles(target, sp)
        if self.preset.roles:
            return self._named_roles(sp, self.preset.roles)

        modes = [MODE_SINGLE, MODE_MULTIPLE]
        if target.optimal_permissions:
            modes.append(f"Optimal set for {target.name} ({len(target.optimal_permissions)} permissions)")
        idx = self.prompter.choose_one("Which permissions?", modes)
        if idx is CANCEL:
            return []
        if idx == 2:
            return self._optimal_roles(target, sp)

        text = self.prompter.ask("Filter permissions (blank for all)", allow_empty=True)
        if text is CANCEL:
            return []
        roles = find_roles(sp, text)
        if not roles:
            console.warn(f"No enabled role matches '{text}'", self.ctx)
            return []
        labels = [f"{r.value} - {r.display_name}: {r.description}" for r in roles]
        if modes[idx] == MODE_SINGLE:
            picked = self.prompter.choose_one(f"{len(roles)} permission(s):", labels)
            return [] if picked is CANCEL else [roles[picked]]
        picked = self.prompter.choose_many(f"{len(roles)} permission(s):", labels)
        return [] if picked is CANCEL else [roles[i] for i in picked]

    def _named_roles(self, sp: ServicePrincipal, names: List[str]) -> List[AppRole]:
        roles = enabled_roles(sp)
        chosen: List[AppRole] = []
        for name in names:
            kind, found = match_permission(OptimalPermission(name), roles)
            if kind == "exact":
                role = found[0]
            elif kind == "fuzzy":
                role = self._pick_candidate(name, found)
            else:
                console.warn(f"No enabled role on {sp.display_name} matches '{name}'", self.ctx)
                role = None
            if role is not None and role not in chosen:
                chosen.append(role)
        return chosen

    def _pick_candidate(self, name: str, candidates: List[AppRole]) -> Optional[AppRole]:
        """Never guess between fuzzy hits: the operator picks, or the name is dropped."""
        if self.assume_yes:
            console.warn(
                f"'{name}' only matched loosely ({', '.join(r.label for r in candidates)}); dropped",
                self.ctx,
            )
            return None
        labels = [f"{r.value} - {r.display_name}" for r in candidates] + ["(skip this permission)"]
        idx = self.prompter.choose_one(f"'{name}' has no exact match. Candidates:", labels)
        if idx is CANCEL or idx == len(candidates):
            return None
        return candidates[idx]

    def _optimal_roles(self, target: ApplicationTarget, sp: ServicePrincipal) -> List[AppRole]:
        if not target.optimal_permissions:
            console.warn(f"No optimal permission set is defined for {target.name}", self.ctx)
            return []
        resolution = resolve_optimal_set(sp, target)
        roles = resolution.roles
        for permission, role in resolution.matched:
            console.ok(f"{permission.name} -> {role.value} ({role.id})")

        dropped = [p.name for p in resolution.missing]
        for permission in resolution.missing:
            console.warn(f"{permission.name}: not found on {sp.display_name}", self.ctx)
        for permission, candidates in resolution.fuzzy:
            role = self._pick_candidate(permission.name, candidates)
            if role is None:
                dropped.append(permission.name)
            elif role not in roles:
                roles.append(role)

        if not roles:
            return []
        if dropped and not self.assume_yes:
            total = len(target.optimal_permissions)
            if not self.prompter.confirm(
                f"{len(dropped)} of {total} permissions unavailable ({', '.join(dropped)}). Proceed with the rest?",
                default=False,
            ):
                return []
        return roles

    # --------------------------------------------------------
    # Confirmation
    # --------------------------------------------------------
    def confirm_batch(
        self,
        action: str,
        target: ApplicationTarget,
        sp: ServicePrincipal,
        principals: List[Principal],
        roles: List[AppRole],
    ) -> bool:
        console.header(f"About to {action} on {target.name}")
        console.kv("Service principal", f"{sp.display_name} ({sp.id})")
        console.kv("Permissions", ", ".join(r.label for r in roles))
        console.kv("Principals", len(principals))
        for p in principals[:PREVIEW_LIMIT]:
            print(f"    {p.label}")
        if len(principals) > PREVIEW_LIMIT:
            print(f"    ... and {len(principals) - PREVIEW_LIMIT} more")

        for role in roles:
            if role.allowed_member_types and "User" not in role.allowed_member_types:
                console.warn(
                    f"{role.label} is declared for {'/'.join(role.allowed_member_types)} only; "
                    "the directory may reject it for users and groups",
                    self.ctx,
                )

        if self.assume_yes:
            return True
        return self.prompter.confirm(f"Proceed with {len(principals) * len(roles)} change(s)?", default=False)
