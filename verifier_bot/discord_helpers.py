from __future__ import annotations

import logging
from typing import Final

import discord

log: Final = logging.getLogger("email-gateway")


async def resolve_text_channel(
    client: discord.Client,
    channel_id: int | None,
    guild: discord.Guild,
) -> discord.TextChannel | None:
    """Return the configured TextChannel of ``guild`` or None if unavailable.

    Looks in the guild cache first, then tries a REST fetch as fallback.
    Channels that belong to a different guild are rejected.
    """
    if not channel_id:
        return None

    channel = guild.get_channel(channel_id)
    if isinstance(channel, discord.TextChannel):
        return channel

    try:
        channel = await client.fetch_channel(channel_id)
    except discord.NotFound:
        log.warning("Channel %s not found", channel_id)
        return None
    except discord.Forbidden:
        log.warning("No access to channel %s – check bot permissions", channel_id)
        return None
    except discord.HTTPException as exc:
        log.warning("Cannot fetch channel %s – HTTP error: %s", channel_id, exc)
        return None

    if not isinstance(channel, discord.TextChannel):
        log.warning("Channel ID %s is not a text channel", channel_id)
        return None
    if channel.guild.id != guild.id:
        log.warning(
            "Channel %s belongs to different guild (%s) than expected (%s)",
            channel_id,
            channel.guild.id,
            guild.id,
        )
        return None
    return channel


async def resolve_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except discord.NotFound:
        return None
    except discord.HTTPException as exc:
        log.warning("Cannot fetch member %s of guild %s: %s", user_id, guild.id, exc)
        return None


async def resolve_member_guild(
    client: discord.Client, user_id: int
) -> discord.Guild | None:
    """Return the first guild the bot shares with ``user_id``.

    Iteration follows the client's guild cache, so a user sharing several
    guilds with the bot is routed to whichever one comes first.
    """
    for guild in client.guilds:
        if await resolve_member(guild, user_id) is not None:
            return guild
    return None


async def send_direct_message(user: discord.abc.User, content: str) -> bool:
    try:
        await user.send(content)
        return True
    except discord.Forbidden:
        log.warning("Cannot DM %s – direct messages are closed", user.id)
    except discord.HTTPException as exc:
        log.exception("Failed to DM %s: %s", user.id, exc)
    return False
