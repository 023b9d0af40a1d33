"""
BankingPanel Core Module

The account query engine and the reactive controller behind the Accounts panel.
No Discord or Red imports: stores, renderer and notifier are injected, so the
whole search/sort/cap flow can be tested without a bot.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, NamedTuple, Optional, Set

log = logging.getLogger("red.bankingpanel")

# --- CONSTANTS ---

RESULT_CAP = 300
DEBOUNCE_DELAY = 0.3  # seconds of quiet before a search runs

SORT_BALANCE_DESC = "bal_d"
SORT_BALANCE_ASC = "bal_a"
SORT_DAILY_DESC = "daily_d"
SORT_DAILY_ASC = "daily_a"
SORT_MODES = (SORT_BALANCE_DESC, SORT_BALANCE_ASC, SORT_DAILY_DESC, SORT_DAILY_ASC)
DEFAULT_SORT = SORT_BALANCE_DESC

TRIGGER_DEBOUNCED = "debounced"
TRIGGER_IMMEDIATE = "immediate"

BANKER_QUERY = "IS:BANKER"
BALANCE_QUERY_RE = re.compile(r"BALANCE:?[<>]?\d+", re.IGNORECASE)
DIGITS_RE = re.compile(r"(\d+)")


# --- RECORDS ---

class Account(NamedTuple):
    name: str
    balance: int
    last_daily_award: Optional[float] = None


class QueryResult(NamedTuple):
    shown: List[Account]
    truncated: bool
    total_matches: int


Predicate = Callable[[Account], bool]


def has_award(account: Account) -> bool:
    """A zero or missing timestamp both mean the account was never awarded."""
    return bool(account.last_daily_award)


def format_award_date(timestamp: Optional[float]) -> str:
    if not timestamp:
        return "Never"
    date = datetime.fromtimestamp(timestamp)
    return f"{date.strftime('%x')} {date.strftime('%X')}"


# --- QUERY PARSER ---

def parse_query(raw_text: str, bankers: Iterable[str]) -> Predicate:
    """Turn a search box value into a predicate over accounts.

    Forms, first match wins:
    - empty text matches everything
    - ``IS:BANKER`` matches names in the banker set
    - ``balance:<N``, ``balance>N``, ``balance:N`` compare the balance to the
      first number in the text; ``<`` anywhere beats ``>`` anywhere
    - anything else is a case-insensitive substring match on the name

    Nothing is rejected: text that looks almost like a balance filter simply
    becomes a name search.
    """
    text = raw_text.strip().upper()

    if text == "":
        return lambda account: True

    if text == BANKER_QUERY:
        banker_names = set(bankers)
        return lambda account: account.name in banker_names

    if BALANCE_QUERY_RE.search(text):
        # The first digit run is the amount, even in text like "balance:1<2".
        amount = int(DIGITS_RE.search(text).group(1))
        if "<" in text:
            return lambda account: account.balance < amount
        if ">" in text:
            return lambda account: account.balance > amount
        return lambda account: account.balance == amount

    return lambda account: text in account.name.upper()


# --- SORT SELECTOR ---

def sort_key(mode: str) -> Optional[Callable[[Account], tuple]]:
    """Key function for a sort mode, or None to keep the input order.

    Award sorts put never-awarded accounts last in both directions.
    """
    if mode == SORT_BALANCE_DESC:
        return lambda account: (-account.balance,)
    if mode == SORT_BALANCE_ASC:
        return lambda account: (account.balance,)
    if mode == SORT_DAILY_DESC:
        return lambda account: (0, -account.last_daily_award) if has_award(account) else (1, 0)
    if mode == SORT_DAILY_ASC:
        return lambda account: (0, account.last_daily_award) if has_award(account) else (1, 0)
    return None


def sort_accounts(accounts: List[Account], mode: str) -> List[Account]:
    """Stable in-place sort; returns the same list for chaining."""
    key = sort_key(mode)
    if key is not None:
        accounts.sort(key=key)
    return accounts


# --- RESULT PIPELINE ---

def run_query(
    raw_text: str,
    mode: str,
    accounts: Iterable[Account],
    bankers: Iterable[str],
    cap: int = RESULT_CAP,
) -> QueryResult:
    """Filter, sort and cap a snapshot of accounts."""
    predicate = parse_query(raw_text, bankers)
    matches = sort_accounts([account for account in accounts if predicate(account)], mode)
    total = len(matches)
    if total > cap:
        return QueryResult(matches[:cap], True, total)
    return QueryResult(matches, False, total)


def truncation_notice(result: QueryResult, cap: int = RESULT_CAP) -> str:
    return f"Showing {cap}/{result.total_matches} matches"


# --- DEBOUNCE ---

class Debouncer:
    """Runs the most recently scheduled callback after a quiet period.

    Scheduling again before the delay elapses cancels the pending run.
    """

    def __init__(self, delay: float = DEBOUNCE_DELAY):
        self.delay = delay
        self._task: Optional[asyncio.Task] = None
        # Every task not yet done, including runs past their quiet period.
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, callback: Callable[[], Awaitable]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.create_task(self._fire(callback))
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)
        return self._task

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def _fire(self, callback: Callable[[], Awaitable]):
        await asyncio.sleep(self.delay)
        # Past the quiet period: a newer schedule must not cancel this run.
        self._task = None
        try:
            await callback()
        except Exception:
            log.error("Debounced run failed", exc_info=True)


# --- REACTIVE CONTROLLER ---

class AccountsController:
    """Keeps the Accounts panel in sync with its search box, sort and banker edits.

    ``accounts`` needs ``get_all()`` and ``remove(names)``; ``bankers`` needs
    ``set_bankers(flags)`` and ``list_all()``. ``render`` receives each new
    QueryResult, ``notify`` receives user-facing notices. All four are awaited.
    """

    def __init__(
        self,
        accounts,
        bankers,
        render: Callable[[QueryResult], Awaitable],
        notify: Callable[[str], Awaitable],
        *,
        cap: int = RESULT_CAP,
        delay: float = DEBOUNCE_DELAY,
        search_text: str = "",
        sort_mode: str = DEFAULT_SORT,
    ):
        self.accounts = accounts
        self.bankers = bankers
        self.render = render
        self.notify = notify
        self.cap = cap
        self.search_text = search_text
        self.sort_mode = sort_mode
        # Banker checkbox state as currently rendered, keyed by account name.
        self.rendered_flags = {}
        self.result: Optional[QueryResult] = None
        self.runs = 0
        self._debouncer = Debouncer(delay)

    @property
    def visible_names(self) -> List[str]:
        return [account.name for account in self.result.shown] if self.result else []

    async def on_trigger(self, kind: str) -> None:
        if kind == TRIGGER_DEBOUNCED:
            self._debouncer.schedule(self.refresh)
        elif kind == TRIGGER_IMMEDIATE:
            await self.refresh()
        else:
            raise ValueError(f"Unknown trigger kind: {kind!r}")

    async def on_input(self, text: str) -> None:
        self.search_text = text
        await self.on_trigger(TRIGGER_DEBOUNCED)

    async def mount(self) -> Optional[QueryResult]:
        await self.on_trigger(TRIGGER_IMMEDIATE)
        return self.result

    async def set_sort(self, mode: str) -> None:
        self.sort_mode = mode
        await self.on_trigger(TRIGGER_IMMEDIATE)

    async def toggle_banker(self, name: str, checked: bool) -> None:
        await self.toggle_bankers({name: checked})

    async def toggle_bankers(self, flags: Dict[str, bool]) -> None:
        """Write the changed checkboxes straight to the store, then re-run once."""
        await self.bankers.set_bankers(flags)
        self.rendered_flags.update(flags)
        log.debug("Banker flags set: %s", flags)
        await self.on_trigger(TRIGGER_IMMEDIATE)

    async def delete_visible(self) -> List[str]:
        names = self.visible_names
        await self.accounts.remove(names)
        log.info("Deleted %d shown accounts (search %r)", len(names), self.search_text)
        await self.on_trigger(TRIGGER_IMMEDIATE)
        return names

    def close(self) -> None:
        self._debouncer.cancel()

    async def refresh(self) -> Optional[QueryResult]:
        """Reconcile banker edits, re-run the query and render the result.

        If a store call fails, nothing is rendered and the previous result stays.
        """
        try:
            banker_names: Set[str] = set(await self.bankers.list_all())
            stale = {
                name: flag for name, flag in self.rendered_flags.items()
                if (name in banker_names) != flag
            }
            if stale:
                await self.bankers.set_bankers(stale)
                banker_names = set(await self.bankers.list_all())
            snapshot = await self.accounts.get_all()
        except Exception:
            log.error("Account refresh aborted, keeping the current list", exc_info=True)
            return None

        result = run_query(self.search_text, self.sort_mode, snapshot, banker_names, self.cap)
        self.runs += 1
        self.result = result
        self.rendered_flags = {account.name: account.name in banker_names for account in result.shown}
        log.debug("Query %r (%s) matched %d accounts", self.search_text, self.sort_mode, result.total_matches)

        if result.truncated:
            await self.notify(truncation_notice(result, self.cap))
        await self.render(result)
        return result
