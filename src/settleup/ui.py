"""Interactive UI components for filling settlement entries."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import EntryStatus, Member, SettlementEntry

logger = logging.getLogger(__name__)

SKIP_WORDS = ("s", "skip")


class MemberCompleter(Completer):
    """Fuzzy search completer for group members."""

    def __init__(self, members: list[Member]):
        """Initialize the completer with the group's members."""
        self.members = members
        self.name_to_id = {m.display_name: m.id for m in members}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for member in self.members:
            if not query or self._fuzzy_match(query, member.display_name.lower()):
                yield Completion(
                    text=member.display_name,
                    start_position=-len(document.text),
                    display=member.display_name,
                )

    def _fuzzy_match(self, query: str, text: str) -> bool:
        """
        Fuzzy match: all characters in query must appear in order in text.

        Example:
            query="ace" matches "Alice"
        """
        query_idx = 0
        for char in text:
            if query_idx < len(query) and char == query[query_idx]:
                query_idx += 1
        return query_idx == len(query)


def parse_amount_input(
    text: str, expected_amount: int | None
) -> tuple[EntryStatus, int | None] | None:
    """
    Interpret what the user typed for an entry amount.

    Blank input accepts the expected amount, "s"/"skip" skips the entry.

    Returns:
        (status, amount), or None when the input is not usable
    """
    text = text.strip().lower().replace(",", "")
    if text in SKIP_WORDS:
        return EntryStatus.SKIPPED, None
    if not text:
        if expected_amount is None:
            return None
        return EntryStatus.FILLED, expected_amount
    if not text.isdigit():
        return None
    return EntryStatus.FILLED, int(text)


def prompt_entry_amount(
    entry: SettlementEntry, payer_name: str
) -> tuple[EntryStatus, int | None] | None:
    """
    Ask for the actual amount of a pending entry.

    Args:
        entry: The pending entry
        payer_name: Display name of the entry's payer

    Returns:
        (status, amount), or None to leave the entry pending
    """
    expected = entry.expected_amount
    print(f"\n📝 {entry.payment_date}  {entry.description}  (paid by {payer_name})")
    if expected is not None:
        print(f"   💡 Expected: {expected:,}")
    print("   Enter amount, blank to accept expected, 's' to skip, Ctrl+C to leave pending\n")

    session: PromptSession[str] = PromptSession()
    try:
        while True:
            result = parse_amount_input(session.prompt("Amount: "), expected)
            if result is not None:
                logger.info(f"Entry {entry.id}: {result[0].value} {result[1]}")
                return result
            print("❌ Please enter a whole non-negative amount.")
    except KeyboardInterrupt:
        print("\n⏭️  Left pending")
        return None
    except EOFError:
        return None


def select_payer_interactive(members: list[Member], current_payer_id: str) -> str | None:
    """
    Interactive payer selection with fuzzy search.

    Returns:
        Selected member id, or None to keep the current payer
    """
    completer = MemberCompleter(members)
    current_name = next(
        (m.display_name for m in members if m.id == current_payer_id), ""
    )
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt(
                "Payer: ", default=current_name, complete_while_typing=True
            )
            if not result:
                return None
            member_id = completer.name_to_id.get(result)
            if member_id:
                return member_id
            print("❌ Unknown member. Press Tab to complete.")
    except (KeyboardInterrupt, EOFError):
        return None


def confirm_action(message: str) -> bool:
    """Simple yes/no confirmation."""
    response = input(f"{message} [Y/n] ").strip().lower()
    return response in ("", "y", "yes")
