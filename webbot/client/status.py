"""Status labels inferred from streamed text.

Rules are evaluated in order and the first matching predicate wins.
"""

import re
from typing import Callable, Optional, Sequence

READY = "Ready"
THINKING = "💭 Thinking"

StatusRule = tuple[Callable[[str], bool], str]


def _pattern(expression: str) -> Callable[[str], bool]:
    regex = re.compile(expression, re.IGNORECASE)
    return lambda token: regex.search(token) is not None


STATUS_RULES: tuple[StatusRule, ...] = (
    (_pattern(r"read_file|reading|viewing|analyzing file"), "🔍 Reading files"),
    (_pattern(r"write_file|writing|creating|saving"), "✏️ Writing files"),
    (_pattern(r"search|searching|finding|looking for"), "🔎 Searching"),
    (_pattern(r"run_command|running|executing|command"), "⚙️ Running commands"),
    (_pattern(r"analyz|check|verify|lint|test"), "✓ Analyzing"),
    (_pattern(r"replace_in_file|modifying|editing|updating"), "✏️ Modifying code"),
    (_pattern(r"list_dir|listing|browsing"), "📁 Listing files"),
    (_pattern(r"think|consider|evaluat|processing"), THINKING),
)


def detect_status(token: str, rules: Sequence[StatusRule] = STATUS_RULES) -> Optional[str]:
    """Return the label of the first rule matching ``token``, if any."""
    for predicate, label in rules:
        if predicate(token):
            return label
    return None
