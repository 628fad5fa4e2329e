import pytest
from approle_manager.graph_client import GraphAPIError
from approle_manager.models import Principal, GROUP, USER
from approle_manager.principal_resolver import (
    CsvImportError,
    PrincipalResolver,
    build_prefix_filter,
    matches_query,
    read_csv_keys,
)
from conftest import FakeDirectory, scripted_prompter


def test_prefix_filter_covers_user_fields_and_escapes_quotes():
    f = build_prefix_filter("o'neil")
    for field in ("displayName", "userPrincipalName", "givenName", "surname"):
        assert f"startswith({field},'o''neil')" in f
    assert f.count(" or ") == 3


def test_prefix_filter_for_groups():
    assert build_prefix_filter("fin", GROUP) == "startswith(displayName,'fin') or startswith(mailNickname,'fin')"


def test_matches_query_checks_upn_local_part_and_sam(alice):
    assert matches_query(alice, "smit")
    assert matches_query(alice, "ALICE")
    assert matches_query(alice, "asmi")
    assert not matches_query(alice, "corp.example")
    assert not matches_query(alice, "   ")


def test_single_match_is_returned_without_interaction(ctx, alice, bob):
    resolver = PrincipalResolver(FakeDirectory(users=[alice, bob]), ctx)
    prompter = scripted_prompter()

    assert resolver.resolve("alice", prompter) == [alice]
    assert prompter.feed.prompts == []


def test_single_match_asks_for_confirmation_when_policy_says_so(ctx, alice, bob):
    ctx.policy.confirm_single_match = True
    resolver = PrincipalResolver(FakeDirectory(users=[alice, bob]), ctx)
    prompter = scripted_prompter("y")

    assert resolver.resolve("alice", prompter) == [alice]
    assert len(prompter.feed.prompts) == 1


def test_zero_matches_without_retry_returns_nothing(ctx, alice):
    directory = FakeDirectory(users=[alice])
    resolver = PrincipalResolver(directory, ctx)

    assert resolver.resolve("zed", scripted_prompter()) == []
    assert ctx.warning_count == 1
    assert directory.created == []


def test_zero_matches_with_retry_reprompts(ctx, alice):
    ctx.policy.retry_on_no_match = True
    resolver = PrincipalResolver(FakeDirectory(users=[alice]), ctx)

    assert resolver.resolve("zed", scripted_prompter("alice")) == [alice]


def test_fallback_scan_finds_substring_matches(ctx, alice, bob):
    directory = FakeDirectory(users=[alice, bob])
    resolver = PrincipalResolver(directory, ctx)

    # "jones" is not a prefix of any filterable field
    assert resolver.search("jones") == [bob]
    assert directory.scans == 1


def test_scan_is_skipped_when_prefix_query_hits(ctx, alice):
    directory = FakeDirectory(users=[alice])
    PrincipalResolver(directory, ctx).search("ali")
    assert directory.scans == 0


def test_broaden_search_always_scans_and_dedupes(ctx, alice):
    ctx.policy.broaden_search = True
    directory = FakeDirectory(users=[alice])

    assert PrincipalResolver(directory, ctx).search("alice") == [alice]
    assert directory.scans == 1


def test_scan_is_bounded_by_policy(ctx):
    users = [Principal(f"u{i}", f"Tester {i}", f"t{i}@corp.example") for i in range(10)]
    ctx.policy.scan_size = 3
    directory = FakeDirectory(users=users)

    assert len(PrincipalResolver(directory, ctx).search("ester")) == 3


def test_prefix_failure_falls_back_to_scan(ctx, alice):
    class Broken(FakeDirectory):
        def search_principals(self, *a, **k):
            raise GraphAPIError(400, "Unsupported query")

    assert PrincipalResolver(Broken(users=[alice]), ctx).search("alice") == [alice]
    assert ctx.warning_count == 1


def test_upn_query_uses_direct_lookup(ctx, alice, bob):
    directory = FakeDirectory(users=[alice, bob])
    assert PrincipalResolver(directory, ctx).search("bob@corp.example") == [bob]
    assert directory.prefix_queries == []


def test_multiple_matches_single_select(ctx, alice):
    alicia = Principal("u9", "Alicia Keys", "alicia@corp.example")
    resolver = PrincipalResolver(FakeDirectory(users=[alice, alicia]), ctx)

    assert resolver.resolve("ali", scripted_prompter("2")) == [alicia]


def test_multiple_matches_multi_select_until_done(ctx, alice):
    alicia = Principal("u9", "Alicia Keys", "alicia@corp.example")
    alina = Principal("u8", "Alina Park", "alina@corp.example")
    resolver = PrincipalResolver(FakeDirectory(users=[alice, alicia, alina]), ctx)

    chosen = resolver.resolve("ali", scripted_prompter("3", "1", "done"), allow_multiple=True)
    assert chosen == [alina, alice]


def test_multiple_matches_cancel(ctx, alice):
    alicia = Principal("u9", "Alicia Keys", "alicia@corp.example")
    resolver = PrincipalResolver(FakeDirectory(users=[alice, alicia]), ctx)
    assert resolver.resolve("ali", scripted_prompter("q")) == []


def test_group_expansion_keeps_only_users(ctx, finance_group):
    members = {
        "g1": [
            {"@odata.type": "#microsoft.graph.user", "id": "u1", "displayName": "Alice", "userPrincipalName": "alice@corp.example"},
            {"@odata.type": "#microsoft.graph.group", "id": "g2", "displayName": "Nested"},
            {"@odata.type": "#microsoft.graph.servicePrincipal", "id": "sp1", "displayName": "Robot"},
            {"@odata.type": "#microsoft.graph.user", "id": "u2", "displayName": "Bob", "userPrincipalName": "bob@corp.example"},
            {"@odata.type": "#microsoft.graph.user", "id": "u1", "displayName": "Alice", "userPrincipalName": "alice@corp.example"},
        ]
    }
    resolver = PrincipalResolver(FakeDirectory(groups=[finance_group], members=members), ctx)

    users = resolver.expand_group_members(finance_group)

    assert [u.id for u in users] == ["u1", "u2"]
    assert all(u.kind == USER for u in users)


def test_group_search_by_id(ctx, finance_group):
    directory = FakeDirectory(groups=[finance_group])
    found = PrincipalResolver(directory, ctx).search("6f1a2b3c-0000-4000-8000-000000000000", kind=GROUP)
    assert found == []
    finance_group.id = "6f1a2b3c-0000-4000-8000-000000000000"
    assert PrincipalResolver(directory, ctx).search(finance_group.id, kind=GROUP) == [finance_group]


def test_csv_import_by_upn_collects_not_found(tmp_path, ctx, alice, bob):
    path = tmp_path / "users.csv"
    path.write_text("DisplayName;UserPrincipalName\nAlice;alice@corp.example\n;\nGhost;ghost@corp.example\nBob;BOB@corp.example\n")
    resolver = PrincipalResolver(FakeDirectory(users=[alice, bob]), ctx)

    result = resolver.import_csv(str(path))

    assert result.principals == [alice, bob]
    assert result.not_found == ["ghost@corp.example"]
    assert result.skipped_rows == 1


def test_csv_import_by_id_with_bom(tmp_path, ctx, alice):
    path = tmp_path / "ids.csv"
    path.write_text("\ufeffid,Note\nu1,first\nu1,dup\n", encoding="utf-8")

    result = PrincipalResolver(FakeDirectory(users=[alice]), ctx).import_csv(str(path))

    assert result.principals == [alice]
    assert result.not_found == []


def test_csv_without_key_column_is_rejected(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("Name,Mail\nAlice,alice@corp.example\n")
    with pytest.raises(CsvImportError):
        read_csv_keys(str(path))


def test_read_csv_keys_reports_column(tmp_path):
    path = tmp_path / "tab.csv"
    path.write_text("UserPrincipalName\tDept\nalice@corp.example\tIT\n")
    assert read_csv_keys(str(path)) == ("UserPrincipalName", ["alice@corp.example"], 0)


class _RejectingDirectory(FakeDirectory):
    def __init__(self, status, **kwargs):
        super().__init__(**kwargs)
        self.status = status

    def get_user(self, key):
        raise GraphAPIError(self.status, '{"error": {"code": "InvalidAuthenticationToken"}}')

    def search_principals(self, *a, **k):
        raise GraphAPIError(self.status, '{"error": {"code": "Authorization_RequestDenied"}}')


@pytest.mark.parametrize("status", [401, 403])
def test_csv_import_propagates_auth_failures(tmp_path, ctx, status):
    path = tmp_path / "users.csv"
    path.write_text("UserPrincipalName\nalice@corp.example\nbob@corp.example\n")

    with pytest.raises(GraphAPIError) as exc:
        PrincipalResolver(_RejectingDirectory(status), ctx).import_csv(str(path))

    assert exc.value.status_code == status


def test_csv_import_keeps_lookup_errors_apart_from_not_found(tmp_path, ctx, alice):
    class Flaky(FakeDirectory):
        def get_user(self, key):
            if key.startswith("busy"):
                raise GraphAPIError(503, "Service Unavailable")
            return super().get_user(key)

    path = tmp_path / "users.csv"
    path.write_text("UserPrincipalName\nalice@corp.example\nbusy@corp.example\nghost@corp.example\n")

    result = PrincipalResolver(Flaky(users=[alice]), ctx).import_csv(str(path))

    assert result.principals == [alice]
    assert result.failed == ["busy@corp.example"]
    assert result.not_found == ["ghost@corp.example"]


def test_prefix_search_does_not_hide_auth_failures(ctx, alice):
    with pytest.raises(GraphAPIError):
        PrincipalResolver(_RejectingDirectory(403, users=[alice]), ctx).search("alice")
