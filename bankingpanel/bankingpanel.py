import logging
from typing import Dict, List, Optional, Sequence, Tuple

import discord
from redbot.core import Config, commands, checks
from redbot.core.bot import Red
from redbot.core.utils.chat_formatting import box, humanize_number, pagify

from .bankingpanel_core import (
    SORT_BALANCE_ASC,
    SORT_BALANCE_DESC,
    SORT_DAILY_ASC,
    SORT_DAILY_DESC,
    Account,
    AccountsController,
    QueryResult,
    format_award_date,
)
from .bankingpanel_stores import (
    DEFAULT_CURRENCY,
    DEFAULT_GUILD,
    MESSAGE_KEYS,
    PERMISSION_KEYS,
    PERMISSION_VALUES,
    AccountStore,
    BankerStore,
    MessageStore,
    PermissionStore,
    SettingsStore,
)

log = logging.getLogger("red.bankingpanel")

PAGE_SIZE = 20
PANEL_TIMEOUT = 600
CONFIRM_TIMEOUT = 30

SORT_LABELS = {
    SORT_BALANCE_DESC: "Balance (high to low)",
    SORT_BALANCE_ASC: "Balance (low to high)",
    SORT_DAILY_DESC: "Last daily award (newest first)",
    SORT_DAILY_ASC: "Last daily award (oldest first)",
}


# --- Rendering ---


def page_count(result: Optional[QueryResult]) -> int:
    if not result or not result.shown:
        return 1
    return (len(result.shown) + PAGE_SIZE - 1) // PAGE_SIZE


def page_rows(result: Optional[QueryResult], page: int) -> List[Account]:
    if not result:
        return []
    return result.shown[page * PAGE_SIZE:(page + 1) * PAGE_SIZE]


def format_account_line(account: Account, banker: bool, currency: str) -> str:
    box_mark = "☑" if banker else "☐"
    return (
        f"{box_mark} **{account.name}** | {humanize_number(account.balance)} {currency}"
        f" | last daily: {format_award_date(account.last_daily_award)}"
    )


def build_accounts_embed(
    result: Optional[QueryResult],
    page: int,
    flags: Dict[str, bool],
    currency: str,
    search_text: str,
    sort_mode: str,
) -> discord.Embed:
    """Project one page of a query result into an embed."""
    rows = page_rows(result, page)
    if rows:
        description = "\n".join(format_account_line(a, flags.get(a.name, False), currency) for a in rows)
    else:
        description = "No accounts match this search."
    embed = discord.Embed(title="Banking: Accounts", description=description, color=discord.Color.gold())
    embed.add_field(name="Search", value=f"`{search_text}`" if search_text.strip() else "*everything*", inline=True)
    embed.add_field(name="Sort", value=SORT_LABELS.get(sort_mode, sort_mode), inline=True)
    shown = len(result.shown) if result else 0
    total = result.total_matches if result else 0
    embed.set_footer(text=f"Page {page + 1}/{page_count(result)} | {shown} shown of {total} matches")
    return embed


# --- UI Classes ---


class ConfirmView(discord.ui.View):
    """Ask one user to pick one of several labelled buttons."""

    def __init__(self, user_id: int, choices: Sequence[Tuple[str, discord.ButtonStyle]], timeout: float = CONFIRM_TIMEOUT):
        super().__init__(timeout=timeout)
        self.user_id = user_id
        self.choice: Optional[str] = None
        for label, style in choices:
            button = discord.ui.Button(label=label, style=style)
            button.callback = self._make_callback(label)
            self.add_item(button)

    def _make_callback(self, label: str):
        async def callback(interaction: discord.Interaction):
            self.choice = label
            for item in self.children:
                item.disabled = True
            await interaction.response.edit_message(view=self)
            self.stop()
        return callback

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.user_id:
            await interaction.response.send_message("This isn't your prompt.", ephemeral=True)
            return False
        return True

    async def ask(self) -> Optional[str]:
        """Wait for a choice; None when the prompt times out."""
        await self.wait()
        return self.choice


class SearchModal(discord.ui.Modal, title="Search Accounts"):
    query = discord.ui.TextInput(
        label="Search",
        placeholder="Name, IS:BANKER, balance:<100, balance>50",
        required=False,
        max_length=100,
    )

    def __init__(self, panel: "AccountsPanelView"):
        super().__init__()
        self.panel = panel
        self.query.default = panel.controller.search_text

    async def on_submit(self, interaction: discord.Interaction):
        await interaction.response.defer()
        self.panel.page = 0
        await self.panel.controller.on_input(self.query.value or "")


class AccountsPanelView(discord.ui.View):
    """Search, sort, tag and bulk-delete accounts."""

    def __init__(self, cog: "BankingPanel", user_id: int, guild: discord.Guild, currency: str, search_text: str = ""):
        super().__init__(timeout=PANEL_TIMEOUT)
        self.cog = cog
        self.user_id = user_id
        self.guild = guild
        self.currency = currency
        self.page = 0
        self.message: Optional[discord.Message] = None

        group = cog.config.guild(guild)
        self.controller = AccountsController(
            AccountStore(group), BankerStore(group), self._render, self._notify,
            search_text=search_text,
        )

        self.sort_select = discord.ui.Select(placeholder="Sort by...", row=0, options=self._sort_options())
        self.sort_select.callback = self._on_sort
        self.add_item(self.sort_select)

        self.banker_select = discord.ui.Select(placeholder="Bankers on this page", min_values=0, row=1)
        self.banker_select.callback = self._on_bankers

    def _sort_options(self) -> List[discord.SelectOption]:
        current = self.controller.sort_mode
        return [
            discord.SelectOption(label=label, value=mode, default=mode == current)
            for mode, label in SORT_LABELS.items()
        ]

    def _sync_components(self):
        result = self.controller.result
        self.page = max(0, min(self.page, page_count(result) - 1))
        self.sort_select.options = self._sort_options()

        rows = page_rows(result, self.page)
        if rows:
            flags = self.controller.rendered_flags
            self.banker_select.options = [
                # Option values are capped at 100 characters; rows are keyed by page index.
                discord.SelectOption(label=a.name[:100], value=str(i), default=flags.get(a.name, False))
                for i, a in enumerate(rows)
            ]
            self.banker_select.max_values = len(rows)
            if self.banker_select not in self.children:
                self.add_item(self.banker_select)
        elif self.banker_select in self.children:
            self.remove_item(self.banker_select)

        self.prev_btn.disabled = self.page == 0
        self.next_btn.disabled = self.page >= page_count(result) - 1
        self.delete_btn.disabled = not self.controller.visible_names

    def _embed(self) -> discord.Embed:
        return build_accounts_embed(
            self.controller.result, self.page, self.controller.rendered_flags,
            self.currency, self.controller.search_text, self.controller.sort_mode,
        )

    async def _render(self, result: QueryResult):
        self._sync_components()
        if self.message:
            try:
                await self.message.edit(embed=self._embed(), view=self)
            except discord.HTTPException:
                log.warning("Could not update accounts panel in guild %s", self.guild.id)

    async def _notify(self, text: str):
        if self.message:
            try:
                await self.message.channel.send(text, delete_after=15)
            except discord.HTTPException:
                pass

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.user_id:
            await interaction.response.send_message("This isn't your panel.", ephemeral=True)
            return False
        return True

    async def on_timeout(self):
        self.controller.close()
        for item in self.children:
            item.disabled = True
        if self.message:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass

    async def _on_sort(self, interaction: discord.Interaction):
        await interaction.response.defer()
        self.page = 0
        await self.controller.set_sort(self.sort_select.values[0])

    def _banker_changes(self, values: List[str]) -> Dict[str, bool]:
        rows = page_rows(self.controller.result, self.page)
        selected = {rows[int(value)].name for value in values}
        return {
            a.name: a.name in selected
            for a in rows
            if self.controller.rendered_flags.get(a.name, False) != (a.name in selected)
        }

    async def _on_bankers(self, interaction: discord.Interaction):
        await interaction.response.defer()
        changes = self._banker_changes(self.banker_select.values)
        if changes:
            await self.controller.toggle_bankers(changes)

    @discord.ui.button(label="Search", style=discord.ButtonStyle.blurple, row=2)
    async def search_btn(self, interaction: discord.Interaction, button: discord.ui.Button):
        await interaction.response.send_modal(SearchModal(self))

    @discord.ui.button(label="Prev", style=discord.ButtonStyle.grey, row=2)
    async def prev_btn(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.page -= 1
        self._sync_components()
        await interaction.response.edit_message(embed=self._embed(), view=self)

    @discord.ui.button(label="Next", style=discord.ButtonStyle.grey, row=2)
    async def next_btn(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.page += 1
        self._sync_components()
        await interaction.response.edit_message(embed=self._embed(), view=self)

    @discord.ui.button(label="Delete Shown", style=discord.ButtonStyle.red, row=2)
    async def delete_btn(self, interaction: discord.Interaction, button: discord.ui.Button):
        count = len(self.controller.visible_names)
        if not count:
            await interaction.response.send_message("No accounts are shown.", ephemeral=True)
            return
        confirm = ConfirmView(self.user_id, [("Delete", discord.ButtonStyle.red), ("Cancel", discord.ButtonStyle.grey)])
        await interaction.response.send_message(
            f"Are you sure? This will delete all **{count}** accounts currently shown, not just this page.",
            view=confirm,
            ephemeral=True,
        )
        if await confirm.ask() != "Delete":
            return
        names = await self.controller.delete_visible()
        await interaction.followup.send(f"Deleted **{len(names)}** accounts.", ephemeral=True)


# --- Cog ---


class BankingPanel(commands.Cog):
    """Admin panel for the server currency: accounts, bankers, permissions and messages."""

    def __init__(self, bot: Red):
        self.bot = bot
        self.config = Config.get_conf(self, identifier=0x42414E4B50, force_registration=True)
        self.config.register_guild(**DEFAULT_GUILD)

    async def red_delete_data_for_user(self, *, requester, user_id: int):
        # Accounts are keyed by in-game name, not Discord user.
        return

    async def _currency(self, guild: discord.Guild) -> str:
        return await SettingsStore(self.config.guild(guild)).get("name", DEFAULT_CURRENCY)

    @commands.guild_only()
    @checks.admin_or_permissions(manage_guild=True)
    @commands.group(name="bankpanel", aliases=["banking"])
    async def bankpanel(self, ctx: commands.Context):
        """Manage the server currency."""

    # --- Accounts ---

    @bankpanel.command(name="accounts")
    async def bankpanel_accounts(self, ctx: commands.Context, *, search: str = ""):
        """Open the accounts panel.

        Search by name, `IS:BANKER`, or `balance:<N`, `balance>N`, `balance:N`.
        At most 300 matches are shown.
        """
        currency = await self._currency(ctx.guild)
        view = AccountsPanelView(self, ctx.author.id, ctx.guild, currency, search)
        loading = discord.Embed(title="Banking: Accounts", description="Loading accounts...", color=discord.Color.gold())
        view.message = await ctx.send(embed=loading, view=view)
        await view.controller.mount()

    @bankpanel.command(name="bankers")
    async def bankpanel_bankers(self, ctx: commands.Context):
        """List every name tagged as a banker."""
        bankers = sorted(await BankerStore(self.config.guild(ctx.guild)).list_all())
        if not bankers:
            await ctx.send("There are no bankers.")
            return
        for page in pagify("\n".join(bankers), delims=["\n"], page_length=1900):
            await ctx.send(box(page))

    # --- Commands tab ---

    @bankpanel.command(name="perms")
    async def bankpanel_perms(self, ctx: commands.Context):
        """Show who may use each banking command."""
        store = PermissionStore(self.config.guild(ctx.guild))
        lines = [f"{key:<14} {await store.get_perm(key)}" for key in PERMISSION_KEYS]
        await ctx.send(box("\n".join(lines)))

    @bankpanel.command(name="perm")
    async def bankpanel_perm(self, ctx: commands.Context, key: str, value: str):
        """Set who may use a banking command."""
        key = key.lower()
        if key not in PERMISSION_KEYS:
            await ctx.send(f"Unknown permission. Choose from: {', '.join(PERMISSION_KEYS)}")
            return
        matched = next((v for v in PERMISSION_VALUES if v.lower() == value.lower()), None)
        if matched is None:
            await ctx.send(f"Unknown value. Choose from: {', '.join(PERMISSION_VALUES)}")
            return
        await PermissionStore(self.config.guild(ctx.guild)).set_perm(key, matched)
        log.info("Permission %s set to %s in guild %s", key, matched, ctx.guild.id)
        await ctx.send(f"**{key}** is now available to **{matched}**.")

    # --- Settings tab ---

    @bankpanel.command(name="messages")
    async def bankpanel_messages(self, ctx: commands.Context):
        """Show the message templates."""
        store = MessageStore(self.config.guild(ctx.guild))
        lines = [f"{key}: {await store.get_message(key)}" for key in MESSAGE_KEYS]
        for page in pagify("\n".join(lines), delims=["\n"], page_length=1900):
            await ctx.send(box(page))

    @bankpanel.command(name="message")
    async def bankpanel_message(self, ctx: commands.Context, key: str, *, text: str):
        """Set a message template."""
        key = key.lower()
        if key not in MESSAGE_KEYS:
            await ctx.send(f"Unknown message. Choose from: {', '.join(MESSAGE_KEYS)}")
            return
        await MessageStore(self.config.guild(ctx.guild)).set_message(key, text)
        log.info("Message %s updated in guild %s", key, ctx.guild.id)
        await ctx.send(f"Updated the **{key}** message.")

    @bankpanel.command(name="currency")
    async def bankpanel_currency(self, ctx: commands.Context, *, name: Optional[str] = None):
        """Show or set the currency name."""
        store = SettingsStore(self.config.guild(ctx.guild))
        if name is None:
            await ctx.send(f"The currency is called **{await store.get('name', DEFAULT_CURRENCY)}**.")
            return
        await store.set("name", name.strip())
        await ctx.send(f"The currency is now called **{name.strip()}**.")
