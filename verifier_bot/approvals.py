from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

import discord

from verifier_bot.discord_helpers import (
    resolve_member,
    resolve_text_channel,
    send_direct_message,
)
from verifier_bot.store import ConfigError, ConfigStore

if TYPE_CHECKING:
    from verifier_bot.flow import VerificationSettings

APPROVE: Final[str] = "approve"
DENY: Final[str] = "deny"
CUSTOM_ID_SEPARATOR: Final[str] = "_"

COMPLETED_TEXT: Final[str] = "Action completed successfully"
INVALID_BUTTON_TEXT: Final[str] = "Invalid button"
UNKNOWN_ACTION_TEXT: Final[str] = "Unknown action"
DENIAL_ERROR_TEXT: Final[str] = "Error processing denial"

log: Final = logging.getLogger("email-gateway")


class InvalidCustomId(ValueError):
    """The component id is not ``<action>_<userId>``."""


def make_custom_id(action: str, user_id: int) -> str:
    return f"{action}{CUSTOM_ID_SEPARATOR}{user_id}"


def parse_custom_id(custom_id: str) -> tuple[str, int]:
    """Split a review button id into its action and target user id.

    The action is returned as-is; callers decide whether it is one they know.
    """
    parts = custom_id.split(CUSTOM_ID_SEPARATOR)
    if len(parts) != 2:
        raise InvalidCustomId(custom_id)
    action, user_part = parts
    if not user_part.isdigit():
        raise InvalidCustomId(custom_id)
    return action, int(user_part)


class ReviewRequestView(discord.ui.View):
    """Approve / Deny buttons attached to a verification request.

    Clicks are routed through :func:`handle_review_button` by custom id, so
    the buttons keep working after a restart.
    """

    def __init__(self, user_id: int) -> None:
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                label="Approve",
                style=discord.ButtonStyle.success,
                custom_id=make_custom_id(APPROVE, user_id),
            )
        )
        self.add_item(
            discord.ui.Button(
                label="Deny",
                style=discord.ButtonStyle.danger,
                custom_id=make_custom_id(DENY, user_id),
            )
        )


async def handle_review_button(
    interaction: discord.Interaction,
    store: ConfigStore,
    settings: VerificationSettings,
) -> None:
    await interaction.response.defer(ephemeral=True, thinking=True)

    custom_id = (interaction.data or {}).get("custom_id", "")
    log.info("Received button interaction: %s", custom_id)

    try:
        action, user_id = parse_custom_id(custom_id)
    except InvalidCustomId:
        log.warning("Invalid button customID format: %s", custom_id)
        await _edit_response(interaction, INVALID_BUTTON_TEXT)
        return

    if interaction.guild is None:
        log.warning("Button %s clicked outside a guild", custom_id)
        await _edit_response(interaction, INVALID_BUTTON_TEXT)
        return

    log.info("Processing %s action for user %s", action, user_id)
    if action == APPROVE:
        await approve_request(interaction, user_id, store, settings)
    elif action == DENY:
        await deny_request(interaction, user_id, store, settings)
    else:
        log.warning("Unknown action: %s", action)
        await _edit_response(interaction, UNKNOWN_ACTION_TEXT)


async def approve_request(
    interaction: discord.Interaction,
    user_id: int,
    store: ConfigStore,
    settings: VerificationSettings,
) -> None:
    guild = interaction.guild
    config, _ = store.get(guild.id)
    member = await resolve_member(guild, user_id)

    if member is None:
        log.warning("Approved user %s is no longer in guild %s", user_id, guild.id)
    else:
        await send_direct_message(member, settings.approval_message)
        if config.unverified_role_id:
            await _remove_unverified_role(
                member,
                config.unverified_role_id,
                reason=f"Verification approved by {interaction.user}",
            )

    log.info("Approved verification of %s - approved by %s", user_id, interaction.user)

    if config.verification_channel_id:
        channel = await resolve_text_channel(
            interaction.client, config.verification_channel_id, guild
        )
        if channel is not None:
            try:
                await channel.send(f"<@{user_id}> has been verified. Welcome! 🎉")
            except discord.HTTPException as exc:
                log.warning("Failed to announce verification of %s: %s", user_id, exc)

    await _close_request(
        interaction,
        store,
        user_id,
        f"<@{user_id}> has been approved! Welcome to the server! 🎉",
    )


async def deny_request(
    interaction: discord.Interaction,
    user_id: int,
    store: ConfigStore,
    settings: VerificationSettings,
) -> None:
    guild = interaction.guild
    member = await resolve_member(guild, user_id)
    if member is not None:
        await send_direct_message(member, settings.denial_message)

    try:
        await guild.kick(
            discord.Object(id=user_id),
            reason=f"Verification denied by {interaction.user}",
        )
    except discord.HTTPException as exc:
        log.warning("Error kicking user %s: %s", user_id, exc)
        await _edit_response(interaction, DENIAL_ERROR_TEXT)
        return

    log.info("Denied verification of %s - denied by %s", user_id, interaction.user)
    await _close_request(
        interaction,
        store,
        user_id,
        f"<@{user_id}> has been denied and removed from the server.",
    )


async def _remove_unverified_role(
    member: discord.Member, role_id: int, *, reason: str
) -> bool:
    role = member.guild.get_role(role_id)
    if role is None:
        log.warning("Unverified role %s not found in guild %s", role_id, member.guild)
        return False
    try:
        await member.remove_roles(role, reason=reason)
        log.info("Removed unverified role %s from %s (%s)", role_id, member, member.id)
        return True
    except discord.Forbidden:
        log.warning("Forbidden when trying to remove unverified role from %s", member)
    except discord.HTTPException as exc:
        log.exception("Failed to remove unverified role from %s: %s", member, exc)
    return False


async def _close_request(
    interaction: discord.Interaction,
    store: ConfigStore,
    user_id: int,
    result_text: str,
) -> None:
    """Strip the buttons from the audit message and finish the interaction."""
    if interaction.message is not None:
        try:
            await interaction.message.edit(
                content=result_text,
                view=None,
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.NotFound:
            log.warning("Audit message not found when updating result for %s", user_id)
        except discord.Forbidden:
            log.warning("No permission to edit audit message for %s", user_id)
        except discord.HTTPException as exc:
            log.exception("Error editing original message: %s", exc)

    try:
        store.pop_pending(interaction.guild.id, user_id)
    except ConfigError as exc:
        log.error("Failed to clear pending verification for %s: %s", user_id, exc)

    await _edit_response(interaction, COMPLETED_TEXT)


async def _edit_response(interaction: discord.Interaction, content: str) -> None:
    try:
        await interaction.edit_original_response(content=content)
    except discord.HTTPException as exc:
        log.warning("Error editing interaction response: %s", exc)
