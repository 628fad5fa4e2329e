from typing import Callable, List, Sequence, Union


class _Cancel:
    def __repr__(self) -> str:
        return "CANCEL"

    def __bool__(self) -> bool:
        return False


# Returned by every prompt when the operator backs out
CANCEL = _Cancel()

CANCEL_TOKENS = ("q", "quit", "cancel")
DONE_TOKEN = "done"


def parse_selection(text: str, count: int) -> List[int]:
    """
    Parse "1,3,5-7" or "all" into zero-based indices.

    Raises ValueError on anything out of range or unparseable.
    """
    text = text.strip().lower()
    if text == "all":
        return list(range(count))
    picked: List[int] = []
    for part in text.replace(" ", "").split(","):
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-", 1)
            start, end = int(lo), int(hi)
            if start > end:
                raise ValueError(f"Bad range: {part}")
            numbers = range(start, end + 1)
        else:
            numbers = [int(part)]
        for n in numbers:
            if n < 1 or n > count:
                raise ValueError(f"{n} is not between 1 and {count}")
            if n - 1 not in picked:
                picked.append(n - 1)
    if not picked:
        raise ValueError("Nothing selected")
    return picked


class Prompter:
    """Line-oriented menus that loop until the input is valid or the operator cancels."""

    def __init__(self, input_func: Callable[[str], str] = input, output_func: Callable[..., None] = print):
        self._input = input_func
        self._print = output_func

    def _read(self, prompt: str) -> Union[str, _Cancel]:
        try:
            raw = self._input(prompt)
        except EOFError:
            return CANCEL
        raw = (raw or "").strip()
        if raw.lower() in CANCEL_TOKENS:
            return CANCEL
        return raw

    def _show_menu(self, title: str, options: Sequence[str]) -> None:
        self._print(f"\n{title}")
        for i, option in enumerate(options, start=1):
            self._print(f"  [{i}] {option}")

    def ask(self, prompt: str, allow_empty: bool = False) -> Union[str, _Cancel]:
        while True:
            answer = self._read(f"{prompt} (q to cancel): ")
            if answer is CANCEL or answer or allow_empty:
                return answer
            self._print("A value is required.")

    def confirm(self, question: str, default: bool = False) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        while True:
            try:
                raw = self._input(f"{question} {suffix}: ")
            except EOFError:
                return False
            raw = (raw or "").strip().lower()
            if not raw:
                return default
            if raw in ("y", "yes"):
                return True
            if raw in ("n", "no", "q"):
                return False
            self._print("Please answer y or n.")

    def choose_one(self, title: str, options: Sequence[str]) -> Union[int, _Cancel]:
        if not options:
            return CANCEL
        self._show_menu(title, options)
        while True:
            answer = self._read(f"Select 1-{len(options)} (q to cancel): ")
            if answer is CANCEL:
                return CANCEL
            try:
                choice = int(answer)
            except ValueError:
                self._print(f"'{answer}' is not a number.")
                continue
            if 1 <= choice <= len(options):
                return choice - 1
            self._print(f"Choose a number between 1 and {len(options)}.")

    def choose_many(self, title: str, options: Sequence[str]) -> Union[List[int], _Cancel]:
        """Accumulate selections across lines until the operator types 'done'."""
        if not options:
            return CANCEL
        self._show_menu(title, options)
        self._print(f"Enter numbers (e.g. 1,3,5-7 or all); type '{DONE_TOKEN}' when finished.")
        picked: List[int] = []
        while True:
            answer = self._read(f"Selection [{len(picked)} chosen]: ")
            if answer is CANCEL:
                return CANCEL
            if answer.lower() == DONE_TOKEN:
                if picked:
                    return picked
                self._print("Nothing selected yet.")
                continue
            try:
                indices = parse_selection(answer, len(options))
            except ValueError as e:
                self._print(f"Invalid selection: {e}")
                continue
            for i in indices:
                if i not in picked:
                    picked.append(i)
            if len(picked) == len(options):
                return picked
