import logging
from collections import OrderedDict
from termcolor import colored
from . import console
from .models import RunContext


def print_summary(ctx: RunContext) -> None:
    console.header("Summary")

    principals = OrderedDict()
    for r in ctx.results:
        principals.setdefault(r.principal.id, r.principal)

    for pid, principal in principals.items():
        c = ctx.per_principal[pid]
        line = f"{principal.label}: success={c.success} skipped={c.skipped} failed={c.failed}"
        print(f"  {colored(line, 'red' if c.failed else 'white')}")
        logging.info(line)

    c = ctx.counters
    console.kv("Success", colored(str(c.success), "green"))
    console.kv("Skipped", colored(str(c.skipped), "cyan"))
    console.kv("Failed", colored(str(c.failed), "red" if c.failed else "white"))
    console.kv("Warnings", ctx.warning_count)
    console.kv("Errors", ctx.error_count)
    logging.info(
        f"Totals: success={c.success} skipped={c.skipped} failed={c.failed} "
        f"warnings={ctx.warning_count} errors={ctx.error_count}"
    )

    failures = ctx.failures()
    if failures:
        print(colored("Failures:", "red", attrs=["bold"]))
        for r in failures:
            print(f"  - {r.action} {r.role.label} / {r.principal.label}: {r.error_kind}")
            logging.error(f"FAILED {r.action} {r.role.value} ({r.role.id}) for {r.principal.id}: {r.detail}")

    if ctx.log_path:
        console.kv("Log file", ctx.log_path)
