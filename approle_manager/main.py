import argparse
import logging
import os
import sys

try:
    from .catalog import APPLICATION_TARGETS
    from .config import config
    from .console import error, header, info, kv
    from .directory import DirectoryService
    from .environment import check_environment
    from .graph_client import AuthenticationError, GraphAPIError, GraphClient
    from .logging_setup import EnvironmentCheckError, setup_logging
    from .models import GRANT, REVOKE, ResolutionPolicy, RunContext
    from .report import print_summary
    from .session import PermissionSession, Preset
except ImportError as e:  # pragma: no cover
    raise SystemExit(
        "Missing dependencies. Install with:\n"
        "  python3 -m pip install -e .\n\n"
        f"Import error: {e}"
    )


def _bool_flag(parser, name: str, default: bool, help_text: str) -> None:
    dest = name.replace("-", "_")
    parser.add_argument(f"--{name}", dest=dest, action="store_true", help=help_text)
    parser.add_argument(f"--no-{name}", dest=dest, action="store_false", help=argparse.SUPPRESS)
    parser.set_defaults(**{dest: default})


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Grant or revoke application role assignments for Entra ID users and groups."
    )
    target = parser.add_argument_group("what to change")
    target.add_argument("--app", help="Target application: " + ", ".join(t.name for t in APPLICATION_TARGETS))
    target.add_argument("--action", choices=[GRANT, REVOKE], help="Grant or revoke.")
    target.add_argument("--role", dest="roles", action="append", default=[], help="Role value or name (repeatable).")
    target.add_argument("--optimal", action="store_true", help="Use the application's optimal permission set.")

    who = parser.add_argument_group("who to change it for")
    who.add_argument("--user", dest="users", action="append", default=[], help="User search term, UPN or id (repeatable).")
    who.add_argument("--group", dest="groups", action="append", default=[], help="Group to assign directly (repeatable).")
    who.add_argument("--group-members", help="Group whose user members receive the assignment.")
    who.add_argument("--csv", dest="csv_path", help="CSV with a UserPrincipalName or Id column.")

    auth = parser.add_argument_group("authentication")
    auth.add_argument("--tenant-id", default=config.TENANT_ID, help="Tenant id (env: AZ_TENANT_ID).")
    auth.add_argument("--client-id", default=config.CLIENT_ID, help="App (client) id (env: AZ_CLIENT_ID).")
    auth.add_argument(
        "--auth-method",
        default=config.AUTH_METHOD,
        choices=["auto", "client-secret", "device-code", "interactive"],
        help="auto uses the client secret from AZ_CLIENT_SECRET when set, else device code.",
    )

    policy = parser.add_argument_group("behaviour")
    _bool_flag(policy, "confirm-single-match", config.CONFIRM_SINGLE_MATCH, "Ask before using a lone search hit.")
    _bool_flag(policy, "retry-on-no-match", config.RETRY_ON_NO_MATCH, "Re-prompt when a search finds nothing.")
    _bool_flag(policy, "broaden-search", config.BROADEN_SEARCH, "Always run the client-side scan.")
    _bool_flag(
        policy,
        "require-elevation",
        config.REQUIRE_ELEVATION,
        "Refuse to run without root/Administrator. Off by default: every change goes through Graph "
        "and nothing is installed locally (env: APPROLE_REQUIRE_ELEVATION).",
    )
    policy.add_argument(
        "--scan-size",
        type=int,
        default=config.SEARCH_SCAN_SIZE,
        help="Principals fetched for the client-side scan (env: APPROLE_SEARCH_SCAN_SIZE).",
    )
    policy.add_argument("-y", "--yes", dest="assume_yes", action="store_true", help="Do not ask for confirmation.")
    policy.add_argument("--log-dir", default=config.LOG_DIR, help="Directory for the run log (env: APPROLE_LOG_DIR).")
    parser.add_argument("--list-apps", action="store_true", help="Print the application catalog and exit.")
    return parser.parse_args(argv)


def list_apps() -> None:
    for t in APPLICATION_TARGETS:
        header(t.name)
        kv("Service principal", t.service_principal_name)
        kv("Description", t.description)
        kv("Optimal set", ", ".join(p.name for p in t.optimal_permissions) or "-")


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.list_apps:
        list_apps()
        return 0

    try:
        check_environment(args.require_elevation)
        log_path = setup_logging(os.path.abspath(args.log_dir))
    except EnvironmentCheckError as e:
        error(str(e))
        return 1

    policy = ResolutionPolicy(
        confirm_single_match=args.confirm_single_match,
        retry_on_no_match=args.retry_on_no_match,
        scan_size=max(1, args.scan_size),
        broaden_search=args.broaden_search,
        assume_yes=args.assume_yes,
    )
    ctx = RunContext(policy=policy, log_path=log_path)
    logging.info(f"Policy: {policy}")

    try:
        client = GraphClient(tenant_id=args.tenant_id, client_id=args.client_id, auth_method=args.auth_method)
    except AuthenticationError as e:
        error(f"Authentication failed: {e}")
        return 1

    preset = Preset(
        app=args.app,
        action=args.action,
        users=args.users,
        groups=args.groups,
        group_members=args.group_members,
        csv_path=args.csv_path,
        roles=args.roles,
        optimal=args.optimal,
    )
    session = PermissionSession(DirectoryService(client), ctx, preset=preset)
    try:
        session.run()
    except KeyboardInterrupt:
        print()
        error("Interrupted")
        logging.warning("Interrupted by operator")
        return 130
    except GraphAPIError as e:
        error(f"Directory call rejected the session ({e.status_code}); see {log_path}")
        logging.error(f"Fatal Graph error: {e.text}")
        print_summary(ctx)
        return 1

    info(f"Done. Log: {log_path}")
    return 2 if ctx.counters.failed else 0


if __name__ == "__main__":
    sys.exit(main())
