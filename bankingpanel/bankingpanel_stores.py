"""Config-backed stores used by the banking panel.

Each store wraps one guild's Config group. The panel only ever reads full
snapshots and writes single keys; there is no locking beyond what Config does.
"""

from typing import Dict, Iterable, List, Optional, Set

from .bankingpanel_core import Account

PERMISSION_VALUES = ("All", "Banker", "Mod", "Admin", "Owner")

DEFAULT_PERMISSIONS = {
    "check": "All",
    "check_others": "All",
    "transfer": "All",
    "add": "Banker",
    "silent_add": "Banker",
    "remove": "Banker",
    "silent_remove": "Banker",
    "banker": "Admin",
}
PERMISSION_KEYS = tuple(DEFAULT_PERMISSIONS)

DEFAULT_MESSAGES = {
    "check": "{{NAME}} currently has {{AMOUNT}} {{CURRENCY}}.",
    "transfer": "{{NAME}} sent {{AMOUNT}} {{CURRENCY}} to {{TARGET}}.",
    "add": "Added {{AMOUNT}} {{CURRENCY}} to {{TARGET}}.",
    "remove": "Removed {{AMOUNT}} {{CURRENCY}} from {{TARGET}}.",
    "daily": "{{NAME}} received their daily {{AMOUNT}} {{CURRENCY}}.",
    "banker_on": "{{TARGET}} is now a banker.",
    "banker_off": "{{TARGET}} is no longer a banker.",
}
MESSAGE_KEYS = tuple(DEFAULT_MESSAGES)

DEFAULT_CURRENCY = "Server Coin"

DEFAULT_GUILD = {
    "accounts": {},
    "bankers": [],
    "permissions": DEFAULT_PERMISSIONS,
    "messages": DEFAULT_MESSAGES,
    "settings": {"name": DEFAULT_CURRENCY},
}


class AccountStore:
    """Accounts keyed by name: ``{name: {"balance": int, "last_daily_award": float | None}}``."""

    def __init__(self, group):
        self.group = group

    async def get_all(self) -> List[Account]:
        accounts = await self.group.accounts()
        return [
            Account(name, data.get("balance", 0), data.get("last_daily_award"))
            for name, data in accounts.items()
        ]

    async def remove(self, names: Iterable[str]) -> int:
        removed = 0
        async with self.group.accounts() as accounts:
            for name in set(names):
                if accounts.pop(name, None) is not None:
                    removed += 1
        return removed


class BankerStore:
    def __init__(self, group):
        self.group = group

    async def is_banker(self, name: str) -> bool:
        return name in await self.group.bankers()

    async def set_banker(self, name: str, flag: bool) -> None:
        await self.set_bankers({name: flag})

    async def set_bankers(self, flags: Dict[str, bool]) -> None:
        """Apply every flag in one Config write."""
        async with self.group.bankers() as bankers:
            for name, flag in flags.items():
                if flag and name not in bankers:
                    bankers.append(name)
                elif not flag and name in bankers:
                    bankers.remove(name)

    async def list_all(self) -> Set[str]:
        return set(await self.group.bankers())


class PermissionStore:
    def __init__(self, group):
        self.group = group

    async def get_perm(self, key: str) -> str:
        if key not in DEFAULT_PERMISSIONS:
            raise KeyError(key)
        permissions = await self.group.permissions()
        return permissions.get(key, DEFAULT_PERMISSIONS[key])

    async def set_perm(self, key: str, value: str) -> None:
        if key not in DEFAULT_PERMISSIONS:
            raise KeyError(key)
        if value not in PERMISSION_VALUES:
            raise ValueError(f"{value!r} is not one of {', '.join(PERMISSION_VALUES)}")
        async with self.group.permissions() as permissions:
            permissions[key] = value


class MessageStore:
    def __init__(self, group):
        self.group = group

    async def get_message(self, key: str) -> str:
        if key not in DEFAULT_MESSAGES:
            raise KeyError(key)
        messages = await self.group.messages()
        return messages.get(key, DEFAULT_MESSAGES[key])

    async def set_message(self, key: str, text: str) -> None:
        if key not in DEFAULT_MESSAGES:
            raise KeyError(key)
        async with self.group.messages() as messages:
            messages[key] = text


class SettingsStore:
    def __init__(self, group):
        self.group = group

    async def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        settings = await self.group.settings()
        return settings.get(key, default)

    async def set(self, key: str, value: str) -> None:
        async with self.group.settings() as settings:
            settings[key] = value
