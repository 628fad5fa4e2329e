import csv
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from . import console
from .directory import DirectoryService, odata_quote
from .graph_client import GraphAPIError
from .models import Principal, RunContext, GROUP, USER
from .prompts import CANCEL, Prompter

KEY_COLUMNS = ("userprincipalname", "id")
_GUID_RX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)


class CsvImportError(ValueError):
    pass


@dataclass
class CsvImportResult:
    principals: List[Principal] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped_rows: int = 0


def build_prefix_filter(query: str, kind: str = USER) -> str:
    q = odata_quote(query.strip())
    if kind == GROUP:
        fields = ("displayName", "mailNickname")
    else:
        fields = ("displayName", "userPrincipalName", "givenName", "surname")
    return " or ".join(f"startswith({f},'{q}')" for f in fields)


def matches_query(principal: Principal, query: str) -> bool:
    """Case-insensitive substring match on the fields the server cannot filter with contains()."""
    needle = query.strip().lower()
    if not needle:
        return False
    haystacks = [
        principal.display_name,
        (principal.user_principal_name or "").split("@")[0],
        principal.sam_account_name or "",
    ]
    return any(needle in (h or "").lower() for h in haystacks)


def dedupe(principals: List[Principal]) -> List[Principal]:
    seen = set()
    out = []
    for p in principals:
        if p.id in seen:
            continue
        seen.add(p.id)
        out.append(p)
    return out


def describe(principal: Principal) -> str:
    parts = [principal.label]
    if principal.sam_account_name:
        parts.append(f"sAM={principal.sam_account_name}")
    if principal.account_enabled is False:
        parts.append("DISABLED")
    return "  ".join(parts)


class PrincipalResolver:
    def __init__(self, directory: DirectoryService, ctx: RunContext):
        self.directory = directory
        self.ctx = ctx

    @property
    def policy(self):
        return self.ctx.policy

    # --------------------------------------------------------
    # Search
    # --------------------------------------------------------
    def search(self, query: str, kind: str = USER) -> List[Principal]:
        query = (query or "").strip()
        if not query:
            return []

        found: List[Principal] = []
        if kind == USER and ("@" in query or _GUID_RX.match(query)):
            direct = self.directory.get_user(query)
            if direct:
                return [direct]
        elif kind == GROUP and _GUID_RX.match(query):
            direct = self.directory.get_group(query)
            if direct:
                return [direct]

        try:
            found.extend(self.directory.search_principals(build_prefix_filter(query, kind), kind=kind))
        except GraphAPIError as e:
            if e.auth_failure:
                raise
            console.warn(f"Prefix search for '{query}' failed; falling back to a scan", self.ctx, detail=str(e))

        if not found or self.policy.broaden_search:
            scanned = self.directory.list_principals(kind=kind, limit=self.policy.scan_size)
            hits = [p for p in scanned if matches_query(p, query)]
            logging.info(f"Client-side scan of {len(scanned)} {kind}s matched {len(hits)} for '{query}'")
            found.extend(hits)

        return dedupe(found)

    def resolve(
        self,
        query: str,
        prompter: Prompter,
        allow_multiple: bool = False,
        kind: str = USER,
    ) -> List[Principal]:
        """Turn a free-text query into the principal(s) the operator means; [] when nothing was chosen."""
        while True:
            candidates = self.search(query, kind)

            if not candidates:
                console.warn(f"No {kind} matched '{query}'", self.ctx)
                retry_query = self._next_query(prompter)
                if retry_query is None:
                    return []
                query = retry_query
                continue

            if len(candidates) == 1:
                only = candidates[0]
                if self.policy.confirm_single_match and not self.policy.assume_yes:
                    if not prompter.confirm(f"One match: {describe(only)}. Use it?", default=True):
                        retry_query = self._next_query(prompter)
                        if retry_query is None:
                            return []
                        query = retry_query
                        continue
                console.ok(f"Selected {only.label}")
                return [only]

            labels = [describe(p) for p in candidates]
            title = f"{len(candidates)} {kind}s match '{query}':"
            if allow_multiple:
                picked = prompter.choose_many(title, labels)
                if picked is CANCEL:
                    return []
                chosen = [candidates[i] for i in picked]
            else:
                picked = prompter.choose_one(title, labels)
                if picked is CANCEL:
                    return []
                chosen = [candidates[picked]]
            for p in chosen:
                console.ok(f"Selected {p.label}")
            return chosen

    def _next_query(self, prompter: Prompter) -> Optional[str]:
        if not self.policy.retry_on_no_match or self.policy.assume_yes:
            return None
        answer = prompter.ask("Enter another search term")
        if answer is CANCEL:
            return None
        return answer

    # --------------------------------------------------------
    # Group expansion
    # --------------------------------------------------------
    def expand_group_members(self, group: Principal) -> List[Principal]:
        members = self.directory.list_group_members(group.id)
        users = []
        dropped = 0
        for m in members:
            if (m.get("@odata.type") or "").lower() != "#microsoft.graph.user":
                dropped += 1
                continue
            users.append(Principal.from_graph(m, kind=USER))
        if dropped:
            logging.info(f"Group {group.display_name}: ignored {dropped} non-user member(s)")
        users = dedupe(users)
        console.info(f"Group {group.display_name} has {len(users)} user member(s)")
        return users

    # --------------------------------------------------------
    # CSV import
    # --------------------------------------------------------
    def import_csv(self, path: str) -> CsvImportResult:
        column, keys, skipped = read_csv_keys(path)
        result = CsvImportResult(skipped_rows=skipped)
        console.info(f"Resolving {len(keys)} row(s) from {path} by {column}")
        for key in keys:
            try:
                principal = self.directory.get_user(key)
            except GraphAPIError as e:
                # a rejected token or missing consent fails every row the same way
                if e.auth_failure:
                    raise
                console.warn(f"Lookup failed for {key}", self.ctx, detail=str(e))
                result.failed.append(key)
                continue
            if principal is None:
                result.not_found.append(key)
                continue
            result.principals.append(principal)
        result.principals = dedupe(result.principals)
        if result.not_found:
            console.warn(f"{len(result.not_found)} row(s) could not be resolved", self.ctx)
        return result


def read_csv_keys(path: str) -> Tuple[str, List[str], int]:
    """Return (key column, non-empty key values, blank row count)."""
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        sample = f.read(4096)
        f.seek(0)
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
        except csv.Error:
            dialect = csv.excel
        reader = csv.DictReader(f, dialect=dialect)
        headers = {(h or "").strip().lower(): h for h in reader.fieldnames or []}
        column = next((headers[k] for k in KEY_COLUMNS if k in headers), None)
        if column is None:
            raise CsvImportError(
                f"{path}: header must contain a UserPrincipalName or Id column (found: {', '.join(reader.fieldnames or [])})"
            )
        keys = []
        skipped = 0
        for row in reader:
            value = (row.get(column) or "").strip()
            if not value:
                skipped += 1
                continue
            keys.append(value)
    return column.strip(), keys, skipped
