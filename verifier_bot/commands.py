"""Administrative slash commands that edit the per-guild settings."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Final

import discord
from discord import app_commands

from verifier_bot.store import ConfigError, ConfigStore, ServerConfig

log: Final = logging.getLogger("email-gateway")

MAX_RATE_LIMIT_MINUTES: Final[int] = 7 * 24 * 60


def _save_error(exc: ConfigError) -> str:
    log.error("Error saving config: %s", exc)
    return f"Error saving config: {exc}"


def _update(
    store: ConfigStore,
    guild_id: int,
    mutator: Callable[[ServerConfig], None],
    ok: str,
) -> str:
    try:
        store.upsert(guild_id, mutator)
    except ConfigError as exc:
        return _save_error(exc)
    return ok


def set_verification_channel(store: ConfigStore, guild_id: int, channel_id: int) -> str:
    def mutate(config: ServerConfig) -> None:
        config.verification_channel_id = channel_id

    return _update(
        store,
        guild_id,
        mutate,
        f"Verification channel set successfully! ✅ <#{channel_id}>",
    )


def set_member_audit_channel(store: ConfigStore, guild_id: int, channel_id: int) -> str:
    def mutate(config: ServerConfig) -> None:
        config.member_audit_channel_id = channel_id

    return _update(
        store,
        guild_id,
        mutate,
        f"Member audit channel set successfully! ✅ <#{channel_id}>",
    )


def set_unverified_role(store: ConfigStore, guild_id: int, role_id: int) -> str:
    def mutate(config: ServerConfig) -> None:
        config.unverified_role_id = role_id

    return _update(
        store, guild_id, mutate, f"Unverified role set successfully! ✅ <@&{role_id}>"
    )


def enable_rate_limit(
    store: ConfigStore, guild_id: int, default_duration: timedelta
) -> str:
    def mutate(config: ServerConfig) -> None:
        config.rate_limit_enabled = True
        if not config.rate_limit_duration:
            config.rate_limit_duration = default_duration

    return _update(store, guild_id, mutate, "Rate limiting enabled successfully! ✅")


def disable_rate_limit(store: ConfigStore, guild_id: int) -> str:
    def mutate(config: ServerConfig) -> None:
        config.rate_limit_enabled = False

    return _update(store, guild_id, mutate, "Rate limiting disabled successfully! ✅")


def set_rate_limit(store: ConfigStore, guild_id: int, minutes: int) -> str:
    if minutes < 1:
        return "Rate limit must be at least 1 minute."

    def mutate(config: ServerConfig) -> None:
        config.rate_limit_duration = timedelta(minutes=minutes)

    return _update(
        store,
        guild_id,
        mutate,
        f"Rate limit set to {minutes} minutes successfully! ✅",
    )


def check_rate_limit(store: ConfigStore, guild_id: int) -> str:
    config, exists = store.get(guild_id)
    if not exists:
        return "No rate limit configured for this server"
    if config.rate_limit_enabled:
        minutes = int(config.rate_limit_duration.total_seconds() // 60)
        return f"Rate limit is enabled with a duration of {minutes} minutes"
    return "Rate limit is disabled"


def pending_verifications(store: ConfigStore, guild_id: int) -> str:
    records = store.pending_for_guild(guild_id)
    if not records:
        return "No pending verification requests."
    lines = [f"**{len(records)} pending verification request(s):**"]
    for record in records:
        lines.append(
            f"• <@{record.user_id}> – `{record.email}` "
            f"(requested <t:{int(record.requested_at.timestamp())}:R>)"
        )
    return "\n".join(lines)


COMMAND_HANDLERS: Final[dict[str, Callable[..., str]]] = {
    "set_verification_channel": set_verification_channel,
    "set_member_audit_channel": set_member_audit_channel,
    "set_unverified_role": set_unverified_role,
    "enable_rate_limit": enable_rate_limit,
    "disable_rate_limit": disable_rate_limit,
    "set_rate_limit": set_rate_limit,
    "check_rate_limit": check_rate_limit,
    "pending_verifications": pending_verifications,
}


def register_commands(
    tree: app_commands.CommandTree,
    store: ConfigStore,
    *,
    default_rate_limit: timedelta,
) -> None:
    """Attach the admin commands to ``tree``; replies are ephemeral."""

    async def reply(interaction: discord.Interaction, content: str) -> None:
        await interaction.response.send_message(content, ephemeral=True)

    admin_only = app_commands.default_permissions(manage_guild=True)

    @tree.command(
        name="set_verification_channel",
        description="Set the channel used for verification announcements",
    )
    @app_commands.describe(channel="The channel to announce verified members in")
    @app_commands.guild_only()
    @admin_only
    async def set_verification_channel_cmd(
        interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        handler = COMMAND_HANDLERS["set_verification_channel"]
        await reply(interaction, handler(store, interaction.guild_id, channel.id))

    @tree.command(
        name="set_member_audit_channel", description="Set the member audit channel"
    )
    @app_commands.describe(channel="The channel to use for member audits")
    @app_commands.guild_only()
    @admin_only
    async def set_member_audit_channel_cmd(
        interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        handler = COMMAND_HANDLERS["set_member_audit_channel"]
        await reply(interaction, handler(store, interaction.guild_id, channel.id))

    @tree.command(name="set_unverified_role", description="Set the unverified role")
    @app_commands.describe(role="The role given to members until they are verified")
    @app_commands.guild_only()
    @admin_only
    async def set_unverified_role_cmd(
        interaction: discord.Interaction, role: discord.Role
    ) -> None:
        handler = COMMAND_HANDLERS["set_unverified_role"]
        await reply(interaction, handler(store, interaction.guild_id, role.id))

    @tree.command(
        name="enable_rate_limit",
        description="Enable rate limiting for email verification",
    )
    @app_commands.guild_only()
    @admin_only
    async def enable_rate_limit_cmd(interaction: discord.Interaction) -> None:
        handler = COMMAND_HANDLERS["enable_rate_limit"]
        await reply(
            interaction, handler(store, interaction.guild_id, default_rate_limit)
        )

    @tree.command(
        name="disable_rate_limit",
        description="Disable rate limiting for email verification",
    )
    @app_commands.guild_only()
    @admin_only
    async def disable_rate_limit_cmd(interaction: discord.Interaction) -> None:
        handler = COMMAND_HANDLERS["disable_rate_limit"]
        await reply(interaction, handler(store, interaction.guild_id))

    @tree.command(
        name="set_rate_limit",
        description="Set the rate limit for email verification",
    )
    @app_commands.describe(minutes="The number of minutes to set the rate limit to")
    @app_commands.guild_only()
    @admin_only
    async def set_rate_limit_cmd(
        interaction: discord.Interaction,
        minutes: app_commands.Range[int, 1, MAX_RATE_LIMIT_MINUTES],
    ) -> None:
        handler = COMMAND_HANDLERS["set_rate_limit"]
        await reply(interaction, handler(store, interaction.guild_id, minutes))

    @tree.command(
        name="check_rate_limit", description="Check the current rate limit status"
    )
    @app_commands.guild_only()
    @admin_only
    async def check_rate_limit_cmd(interaction: discord.Interaction) -> None:
        handler = COMMAND_HANDLERS["check_rate_limit"]
        await reply(interaction, handler(store, interaction.guild_id))

    @tree.command(
        name="pending_verifications",
        description="List verification requests awaiting a moderator",
    )
    @app_commands.guild_only()
    @admin_only
    async def pending_verifications_cmd(interaction: discord.Interaction) -> None:
        handler = COMMAND_HANDLERS["pending_verifications"]
        await reply(interaction, handler(store, interaction.guild_id))
