async def setup(bot):
    # Imported here so the core and store modules load without discord.py.
    from .bankingpanel import BankingPanel

    await bot.add_cog(BankingPanel(bot))
