#!/usr/bin/env python3
"""Discord email verification gateway bot
----------------------------------------
* New members get the unverified role and a DM asking for their email.
* A DM'd institutional email is posted to the member audit channel with
  Approve / Deny buttons for moderators.
* Approval removes the unverified role; denial kicks with a re-invite link.

Required env-vars: DISCORD_TOKEN
Optional: GUILD_ID, CONFIG_PATH, EMAIL_DOMAIN, COMMUNITY_NAME, REINVITE_URL,
DEFAULT_RATE_LIMIT_MINUTES, LOG_LEVEL
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Final

import discord
from discord import app_commands

from bots.config import BotConfig, read_log_level
from verifier_bot.commands import register_commands
from verifier_bot.flow import VerificationFlow
from verifier_bot.rate_limit import RateLimiter
from verifier_bot.store import ConfigError, ConfigStore

LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

log = logging.getLogger("email-gateway")


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.dm_messages = True
    intents.message_content = True
    return intents


class VerificationRuntime:
    """Owns the client, the settings store and the rate limiter.

    Event handlers are bound methods so tests can drive them with mocks and
    no state lives at module level.
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        client: discord.Client | None = None,
        store: ConfigStore | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.config = config
        self.client = client or discord.Client(intents=build_intents())
        self.tree = app_commands.CommandTree(self.client)
        self.store = store or ConfigStore(config.config_path)
        self.limiter = limiter or RateLimiter()
        self.settings = config.verification_settings()
        self.flow = VerificationFlow(
            self.client, self.store, self.limiter, self.settings
        )
        self._synced = False
        self.sync_error: discord.HTTPException | None = None

        register_commands(
            self.tree, self.store, default_rate_limit=self.settings.default_rate_limit
        )
        for handler in (
            self.on_ready,
            self.on_member_join,
            self.on_message,
            self.on_interaction,
        ):
            self.client.event(handler)

    async def sync_commands(self) -> int:
        if self.config.guild_id:
            guild = discord.Object(id=self.config.guild_id)
            log.info("Deploying commands to guild ID: %s", self.config.guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            log.info("Deploying commands globally as no guild ID is provided.")
            synced = await self.tree.sync()
        return len(synced)

    # ---------- Events ----------

    async def on_ready(self) -> None:
        if not self._synced:
            try:
                count = await self.sync_commands()
            except discord.HTTPException as exc:
                log.critical("Error registering slash commands: %s", exc)
                self.sync_error = exc
                await self.client.close()
                return
            self._synced = True
            log.info("Registered %d commands", count)
        log.info("Bot ready as %s (%s)", self.client.user, self.client.user.id)

    async def on_member_join(self, member: discord.Member) -> None:
        await self.flow.handle_member_join(member)

    async def on_message(self, message: discord.Message) -> None:
        await self.flow.handle_direct_message(message)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type == discord.InteractionType.component:
            await self.flow.handle_component(interaction)

    # ---------- Lifecycle ----------

    async def run(self) -> None:
        self.store.load()
        async with self.client:
            await self.client.start(self.config.discord_token)
        if self.sync_error is not None:
            raise RuntimeError(
                f"Command registration failed: {self.sync_error}"
            ) from self.sync_error

    @classmethod
    def create(cls) -> "VerificationRuntime":
        return cls(BotConfig.load())


async def main() -> None:
    runtime = VerificationRuntime.create()
    await runtime.run()


def run() -> None:
    logging.basicConfig(level=read_log_level(), format=LOG_FORMAT)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down...")
    except (RuntimeError, ConfigError, discord.LoginFailure) as exc:
        log.critical("Startup failed: %s", exc)
        sys.exit(1)
    except Exception as exc:  # pylint: disable=broad-except
        log.critical("Bot crashed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
