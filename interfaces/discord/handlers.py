from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

import discord
from discord.ext import commands

from application.services import (
    claim,
    get_position_detail,
    list_positions,
    list_transactions,
    stake,
    unstake,
)
from domain.models import LOCK_PERIODS
from domain.repositories import StakingRepository

logger = logging.getLogger(__name__)

MESSAGE_LIMIT = 2000


def _user_id(user: discord.abc.User) -> str:
    # Panel accounts are created through Discord OAuth, so the Discord user
    # id is the panel user id.
    return str(user.id)


def _format_time(epoch_ms: int) -> str:
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M UTC")


def _chunk_lines(lines: List[str], limit: int = MESSAGE_LIMIT) -> List[str]:
    """Group lines into messages that each fit within Discord's length limit."""

    messages: List[str] = []
    current = ""
    for line in lines:
        line = line[:limit]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            messages.append(current)
            candidate = line
        current = candidate
    if current:
        messages.append(current)
    return messages


def create_discord_bot(staking_repo: StakingRepository) -> commands.Bot:
    """
    Configure and return a Discord bot exposing the staking commands:
    !stake, !unstake, !claim, !positions, !position, !balance and !history.
    """

    intents = discord.Intents.default()
    intents.message_content = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send("Missing or invalid argument. Type !help to see usage.")
            return
        if isinstance(error, commands.CommandNotFound):
            return
        logger.error("Command %s failed", ctx.command, exc_info=error)
        await ctx.send("Something went wrong, please try again later.")

    @bot.command(name="start")
    async def start_cmd(ctx: commands.Context):
        await ctx.send(
            "Welcome to the staking pool!\n"
            "Lock coins with !stake and earn interest every day.\n"
            "Type !help to see available commands."
        )

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        periods = ", ".join(LOCK_PERIODS)
        await ctx.send(
            f"!stake <amount> <lock>      - stake coins ({periods})\n"
            "!unstake <positionId>       - close a position\n"
            "!claim <positionId>         - claim earnings without closing\n"
            "!positions                  - list your positions\n"
            "!position <positionId>      - show position details\n"
            "!balance                    - show your coin balance\n"
            "!history                    - show your staking transactions\n"
        )

    @bot.command(name="balance")
    async def balance_cmd(ctx: commands.Context):
        balance = staking_repo.get_balance(_user_id(ctx.author))
        await ctx.send(f"Balance: {balance:.2f} coins")

    @bot.command(name="stake")
    async def stake_cmd(ctx: commands.Context, amount: str, lock_period: str):
        result = stake(_user_id(ctx.author), amount, lock_period, staking_repo)
        if not result.success:
            await ctx.send(result.error_message or "Stake failed.")
            return

        position = result.position
        await ctx.send(
            f"Staked {position.amount:.2f} coins with {position.lock_period} lock.\n"
            f"Position: {position.position_id}"
        )

    @bot.command(name="unstake")
    async def unstake_cmd(ctx: commands.Context, position_id: str):
        result = unstake(_user_id(ctx.author), position_id, staking_repo)
        if not result.success:
            await ctx.send(result.error_message or "Unstake failed.")
            return

        text = (
            f"Unstaked: {result.principal:.2f} principal + "
            f"{result.earnings:.2f} earnings = {result.returned:.2f} coins."
        )
        if result.penalty_applied:
            text += "\nLock period not over: early withdrawal penalty applied to earnings."
        await ctx.send(text)

    @bot.command(name="claim")
    async def claim_cmd(ctx: commands.Context, position_id: str):
        result = claim(_user_id(ctx.author), position_id, staking_repo)
        if not result.success:
            await ctx.send(result.error_message or "Claim failed.")
            return

        await ctx.send(
            f"Claimed {result.claimed_amount:.2f} coins. "
            f"New balance: {result.new_balance:.2f}"
        )

    @bot.command(name="positions")
    async def positions_cmd(ctx: commands.Context):
        result = list_positions(_user_id(ctx.author), staking_repo)
        if not result.positions:
            await ctx.send("You have no staking positions.")
            return

        lines = []
        if result.migrated:
            lines.append("Your old stake was moved to a 30d position.")
        for view in result.positions:
            status = f"locked until {_format_time(view.unlock_time)}" if view.is_locked else "unlocked"
            lines.append(
                f"{view.position.position_id}: {view.position.amount:.2f} "
                f"({view.position.lock_period}, {status}), "
                f"earned {view.current_earnings:.4f}"
            )
        for message in _chunk_lines(lines):
            await ctx.send(message)

    @bot.command(name="position")
    async def position_cmd(ctx: commands.Context, position_id: str):
        result = get_position_detail(_user_id(ctx.author), position_id, staking_repo)
        if not result.success:
            await ctx.send(result.error_message or "Position not found.")
            return

        detail = result.detail
        await ctx.send(
            f"Position {detail.position.position_id}\n"
            f"Principal: {detail.position.amount:.2f}\n"
            f"Lock: {detail.lock_period_days} days, APR {detail.bonus_apr:.1f}% "
            f"(base {detail.base_apr:.1f}%)\n"
            f"Earned so far: {detail.current_earnings:.4f}\n"
            f"Projected: {detail.projected_earnings:.2f}\n"
            f"Unlocks: {_format_time(detail.unlock_time)}\n"
            f"Early withdrawal penalty: {detail.early_withdrawal_penalty:.0f}% of earnings"
        )

    @bot.command(name="history")
    async def history_cmd(ctx: commands.Context):
        records = list_transactions(_user_id(ctx.author), staking_repo)
        if not records:
            await ctx.send("No staking transactions yet.")
            return

        # Discord messages are capped, only show the latest entries.
        lines = [
            f"{_format_time(r.timestamp)}  {r.amount:.2f}  {r.description}"
            for r in records[-15:]
        ]
        await ctx.send("\n".join(lines))

    return bot
