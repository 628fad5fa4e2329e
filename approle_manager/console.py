import logging
from termcolor import colored

# Everything shown here is also written to the log file; `detail` goes only to the log.


def header(title: str) -> None:
    print()
    print(colored(title, "yellow", attrs=["bold"]))
    print(colored("-" * len(title), "yellow"))
    logging.info(f"== {title} ==")


def info(msg: str) -> None:
    print(f"{colored('[*] ', 'cyan')}{msg}")
    logging.info(msg)


def ok(msg: str) -> None:
    print(f"{colored('[+] ', 'green')}{msg}")
    logging.info(msg)


def warn(msg: str, ctx=None, detail: str = None) -> None:
    print(f"{colored('[!] ', 'yellow')}{msg}")
    logging.warning(f"{msg} | {detail}" if detail else msg)
    if ctx is not None:
        ctx.warning_count += 1


def error(msg: str, ctx=None, detail: str = None) -> None:
    print(f"{colored('[-] ', 'red')}{msg}")
    logging.error(f"{msg} | {detail}" if detail else msg)
    if ctx is not None:
        ctx.error_count += 1


def kv(key: str, value) -> None:
    print(f"{colored(key + ':', 'white')} {value}")
