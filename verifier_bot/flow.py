"""Member onboarding: join greeting, email submission and moderator routing.

A member moves through ``Joined -> AwaitingEmail -> PendingReview`` here;
the moderator decision that ends the flow lives in :mod:`verifier_bot.approvals`.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Final

import discord

from verifier_bot import approvals
from verifier_bot.discord_helpers import (
    resolve_member_guild,
    resolve_text_channel,
    send_direct_message,
)
from verifier_bot.rate_limit import RateLimiter
from verifier_bot.store import ConfigError, ConfigStore, PendingVerification

log: Final = logging.getLogger("email-gateway")

EMAIL_LOCAL_PART: Final[str] = r"[a-zA-Z0-9._%+-]+"


@dataclass(frozen=True, slots=True)
class VerificationSettings:
    email_domain: str = "uclan.ac.uk"
    community_name: str = "UCLan Computing Society"
    reinvite_url: str = "https://discord.gg/CEgCy5ejag"
    default_rate_limit: timedelta = timedelta(minutes=5)

    @property
    def welcome_message(self) -> str:
        return (
            "Welcome! Please provide your university email for verification. "
            f"For example:```example@{self.email_domain}```"
        )

    @property
    def invalid_email_message(self) -> str:
        return (
            "Invalid email. Please provide a valid email address ending in "
            f"@{self.email_domain}."
        )

    @property
    def submitted_message(self) -> str:
        return "Thanks! Your email has been sent to the moderators for review."

    @property
    def approval_message(self) -> str:
        return (
            f"You have been approved to join the {self.community_name} server. "
            "Welcome! 🎉"
        )

    @property
    def denial_message(self) -> str:
        return (
            f"Oops! You need to verify your identity with a @{self.email_domain} "
            f"email address to access the {self.community_name} server. This is to "
            "ensure only society members have access to the server and ensure we "
            "keep a safe and civil community.\n\n"
            "As you did not verify your email, you were kicked from the server. "
            f"You can rejoin and retry verification using this link: "
            f"{self.reinvite_url}. Thank you 🙂"
        )


def build_email_pattern(domain: str) -> re.Pattern[str]:
    """Case-sensitive pattern accepting ``<local>@<domain>`` and nothing else."""
    return re.compile(rf"{EMAIL_LOCAL_PART}@{re.escape(domain)}")


def is_valid_email(content: str, pattern: re.Pattern[str]) -> bool:
    return pattern.fullmatch(content) is not None


def format_wait(retry_after: timedelta) -> str:
    minutes = max(1, math.ceil(retry_after.total_seconds() / 60))
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


class VerificationFlow:
    """Drives members from joining the guild to a pending moderator review."""

    def __init__(
        self,
        client: discord.Client,
        store: ConfigStore,
        limiter: RateLimiter,
        settings: VerificationSettings,
    ) -> None:
        self.client = client
        self.store = store
        self.limiter = limiter
        self.settings = settings
        self.email_pattern = build_email_pattern(settings.email_domain)

    # ---------- Joined -> AwaitingEmail ----------

    async def handle_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return

        guild = member.guild
        config, _ = self.store.get(guild.id)

        if config.unverified_role_id:
            role = guild.get_role(config.unverified_role_id)
            if role is None:
                log.warning(
                    "Unverified role %s not found in guild %s",
                    config.unverified_role_id,
                    guild.id,
                )
            else:
                try:
                    await member.add_roles(role, reason="Awaiting email verification")
                    log.info("Assigned unverified role to %s (%s)", member, member.id)
                except discord.Forbidden:
                    log.warning("Forbidden when adding unverified role to %s", member)
                except discord.HTTPException as exc:
                    log.exception(
                        "Failed to add unverified role to %s: %s", member, exc
                    )
        else:
            log.info("No unverified role configured for guild %s", guild.id)

        await send_direct_message(member, self.settings.welcome_message)

    # ---------- AwaitingEmail -> PendingReview ----------

    async def handle_direct_message(self, message: discord.Message) -> None:
        author = message.author
        if author.bot or (self.client.user and author.id == self.client.user.id):
            return
        if message.guild is not None or not isinstance(
            message.channel, discord.DMChannel
        ):
            return

        guild = await resolve_member_guild(self.client, author.id)
        if guild is None:
            log.info("User %s (%s) is not in any guild", author, author.id)
            return

        config, _ = self.store.get(guild.id)

        if config.rate_limit_enabled:
            result = self.limiter.check(author.id, config.rate_limit_duration)
            if not result.allowed:
                await self._reply(
                    message,
                    f"Please wait {format_wait(result.retry_after)} before sending "
                    "another verification request.",
                )
                return

        email = message.content
        if not is_valid_email(email, self.email_pattern):
            await self._reply(message, self.settings.invalid_email_message)
            return

        if not config.member_audit_channel_id:
            log.info("No member audit channel configured for guild %s", guild.id)
            return

        channel = await resolve_text_channel(
            self.client, config.member_audit_channel_id, guild
        )
        if channel is None:
            log.warning(
                "Member audit channel %s unavailable in guild %s",
                config.member_audit_channel_id,
                guild.id,
            )
            return

        view = approvals.ReviewRequestView(author.id)
        # Clicks reach on_interaction by custom id; a finished view is not kept
        # in the client's view store.
        view.stop()
        try:
            audit_message = await channel.send(
                f"User **{author.display_name}** ({author.mention}) has requested "
                f"verification with email `{email}`",
                view=view,
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.Forbidden:
            log.warning("No send permission in member audit channel %s", channel.id)
            return
        except discord.HTTPException as exc:
            log.exception("Error sending message to audit channel: %s", exc)
            return

        log.info(
            "Verification request for %s (%s) posted to guild %s",
            author,
            author.id,
            guild.id,
        )

        try:
            self.store.add_pending(
                PendingVerification(
                    user_id=author.id,
                    guild_id=guild.id,
                    email=email,
                    audit_channel_id=channel.id,
                    audit_message_id=audit_message.id,
                )
            )
        except ConfigError as exc:
            log.error(
                "Failed to record pending verification for %s: %s", author.id, exc
            )

        await self._reply(message, self.settings.submitted_message)

    # ---------- PendingReview -> Approved | Denied ----------

    async def handle_component(self, interaction: discord.Interaction) -> None:
        await approvals.handle_review_button(interaction, self.store, self.settings)

    async def _reply(self, message: discord.Message, content: str) -> None:
        try:
            await message.channel.send(content)
        except discord.HTTPException as exc:
            log.warning("Failed to reply to %s: %s", message.author.id, exc)
