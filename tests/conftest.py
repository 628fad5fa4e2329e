import logging
import re
import pytest
from approle_manager.models import (
    AppRole,
    AppRoleAssignment,
    Principal,
    ResolutionPolicy,
    RunContext,
    ServicePrincipal,
    GROUP,
    USER,
)
from approle_manager.prompts import Prompter

_QUOTED = re.compile(r"'((?:[^']|'')*)'")


class FakeDirectory:
    """In-memory stand-in for DirectoryService that records every mutating call."""

    def __init__(self, users=(), groups=(), service_principals=(), members=None):
        self.users = list(users)
        self.groups = list(groups)
        self.sps = {sp.display_name: sp for sp in service_principals}
        self.members = members or {}
        self.assignments = []
        self.created = []
        self.deleted = []
        self.fail_create = {}
        self.fail_delete = {}
        self.fail_list = {}
        self.prefix_queries = []
        self.scans = 0

    def _pool(self, kind):
        return self.groups if kind == GROUP else self.users

    def search_principals(self, odata_filter, kind=USER, top=50):
        self.prefix_queries.append(odata_filter)
        q = _QUOTED.search(odata_filter).group(1).replace("''", "'").lower()
        return [
            p
            for p in self._pool(kind)
            if p.display_name.lower().startswith(q) or p.user_principal_name.lower().startswith(q)
        ][:top]

    def list_principals(self, kind=USER, limit=100):
        self.scans += 1
        return self._pool(kind)[:limit]

    def get_user(self, key):
        for u in self.users:
            if u.id == key or u.user_principal_name.lower() == key.lower():
                return u
        return None

    def get_group(self, group_id):
        return next((g for g in self.groups if g.id == group_id), None)

    def list_group_members(self, group_id):
        return self.members.get(group_id, [])

    def find_service_principal(self, display_name):
        return self.sps.get(display_name)

    def list_assignments(self, principal, resource_id):
        if principal.id in self.fail_list:
            raise self.fail_list[principal.id]
        return [a for a in self.assignments if a.principal_id == principal.id and a.resource_id == resource_id]

    def create_assignment(self, principal_id, resource_id, app_role_id):
        self.created.append((principal_id, resource_id, app_role_id))
        err = self.fail_create.get((principal_id, app_role_id))
        if err:
            raise err
        a = AppRoleAssignment(
            id=f"asg-{len(self.created)}",
            principal_id=principal_id,
            resource_id=resource_id,
            app_role_id=app_role_id,
        )
        self.assignments.append(a)
        return a

    def delete_assignment(self, resource_id, assignment_id):
        self.deleted.append(assignment_id)
        err = self.fail_delete.get(assignment_id)
        if err:
            raise err
        self.assignments = [a for a in self.assignments if a.id != assignment_id]

    def grant_existing(self, principal, sp, role, assignment_id="existing-1"):
        self.assignments.append(AppRoleAssignment(assignment_id, principal.id, sp.id, role.id))


class ScriptedInput:
    """Feeds canned answers to Prompter; running out means an unexpected prompt."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {prompt!r}")
        return self.answers.pop(0)


def scripted_prompter(*answers):
    feed = ScriptedInput(answers)
    prompter = Prompter(input_func=feed, output_func=lambda *a, **k: None)
    prompter.feed = feed
    return prompter


@pytest.fixture
def alice():
    return Principal("u1", "Alice Smith", "alice@corp.example", sam_account_name="asmith", account_enabled=True)


@pytest.fixture
def bob():
    return Principal("u2", "Bob Jones", "bob@corp.example", sam_account_name="bjones", account_enabled=True)


@pytest.fixture
def carol():
    return Principal("u3", "Carol White", "carol.w@corp.example", sam_account_name="cwhite", account_enabled=False)


@pytest.fixture
def finance_group():
    return Principal("g1", "Finance Team", "finance@corp.example", kind=GROUP)


@pytest.fixture
def graph_sp():
    return ServicePrincipal(
        id="sp-graph",
        app_id="00000003-0000-0000-c000-000000000000",
        display_name="Microsoft Graph",
        app_roles=[
            AppRole("r-user-read-all", "Read all users' full profiles", "User.Read.All", "Allows reading users"),
            AppRole("r-group-read-all", "Read all groups", "Group.Read.All", "Allows reading groups"),
            AppRole("r-dir-read-all", "Read directory data", "Directory.Read.All", "Allows reading the directory"),
            AppRole("r-team-basic", "Get a list of all teams", "Team.ReadBasic.All", "Allows listing teams"),
            AppRole("r-old", "Legacy role", "Legacy.Read.All", "Retired", is_enabled=False),
        ],
    )


@pytest.fixture
def ctx():
    return RunContext(policy=ResolutionPolicy(confirm_single_match=False, retry_on_no_match=False))


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
