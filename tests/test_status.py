"""Tests for status labels inferred from streamed text."""

import pytest

from webbot.client.status import THINKING, detect_status


@pytest.mark.parametrize(
    ("token", "label"),
    [
        ("Reading src/app.ts", "🔍 Reading files"),
        ("Writing the new component", "✏️ Writing files"),
        ("Searching for usages", "🔎 Searching"),
        ("Running npm install", "⚙️ Running commands"),
        ("Let me verify that", "✓ Analyzing"),
        ("Updating the handler", "✏️ Modifying code"),
        ("Browsing the folder", "📁 Listing files"),
        ("Let me think about it", THINKING),
    ],
)
def test_rules(token: str, label: str) -> None:
    assert detect_status(token) == label


def test_first_matching_rule_wins() -> None:
    # "reading" comes before "running" in rule order
    assert detect_status("reading then running") == "🔍 Reading files"


def test_no_match() -> None:
    assert detect_status("Hello!") is None


def test_custom_rules() -> None:
    rules = [(lambda token: token.startswith("!"), "Shouting")]
    assert detect_status("!hey", rules) == "Shouting"
    assert detect_status("hey", rules) is None
