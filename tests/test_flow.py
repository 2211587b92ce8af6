"""Tests for member onboarding and email submission."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from verifier_bot.approvals import ReviewRequestView
from verifier_bot.flow import (
    VerificationFlow,
    VerificationSettings,
    build_email_pattern,
    format_wait,
    is_valid_email,
)

from .conftest import (
    AUDIT_CHANNEL_ID,
    BOT_USER_ID,
    GUILD_ID,
    ROLE_ID,
    USER_ID,
    http_error,
)


class TestEmailPattern:
    @pytest.fixture
    def pattern(self):
        return build_email_pattern("uclan.ac.uk")

    @pytest.mark.parametrize(
        "email",
        ["a.b-c%d+e@uclan.ac.uk", "student_1@uclan.ac.uk", "JBloggs@uclan.ac.uk"],
    )
    def test_accepts_institutional_addresses(self, pattern, email):
        assert is_valid_email(email, pattern)

    @pytest.mark.parametrize(
        "email",
        [
            "user@UCLAN.AC.UK",
            "user@other.ac.uk",
            "not-an-email",
            "@uclan.ac.uk",
            "user@uclanXac.uk",
            "user@uclan.ac.uk.evil.com",
            "user name@uclan.ac.uk",
            "user@uclan.ac.uk\n",
        ],
    )
    def test_rejects_everything_else(self, pattern, email):
        assert not is_valid_email(email, pattern)

    def test_domain_is_configurable(self):
        pattern = build_email_pattern("example.edu")
        assert is_valid_email("x@example.edu", pattern)
        assert not is_valid_email("x@uclan.ac.uk", pattern)


def test_format_wait_rounds_up():
    assert format_wait(timedelta(seconds=10)) == "1 minute"
    assert format_wait(timedelta(minutes=2, seconds=1)) == "3 minutes"
    assert format_wait(timedelta(minutes=5)) == "5 minutes"


def test_settings_messages_mention_domain_and_invite():
    settings = VerificationSettings(
        email_domain="example.edu",
        community_name="Example Club",
        reinvite_url="https://discord.gg/abc",
    )
    assert "example@example.edu" in settings.welcome_message
    assert "Example Club" in settings.approval_message
    assert "https://discord.gg/abc" in settings.denial_message


@pytest.fixture
def flow(client, store, limiter, settings):
    return VerificationFlow(client, store, limiter, settings)


def configure(store, **fields):
    def mutate(config):
        for name, value in fields.items():
            setattr(config, name, value)

    store.upsert(GUILD_ID, mutate)


def dm_message(content: str, author):
    message = MagicMock(spec=discord.Message)
    message.content = content
    message.author = author
    message.guild = None
    message.channel = MagicMock(spec=discord.DMChannel)
    message.channel.send = AsyncMock()
    return message


class TestMemberJoin:
    @pytest.mark.asyncio
    async def test_assigns_role_and_sends_instructions(self, flow, store, member, role):
        configure(store, unverified_role_id=ROLE_ID)

        await flow.handle_member_join(member)

        member.add_roles.assert_awaited_once_with(
            role, reason="Awaiting email verification"
        )
        member.send.assert_awaited_once()
        assert "example@uclan.ac.uk" in member.send.await_args.args[0]

    @pytest.mark.asyncio
    async def test_unconfigured_guild_still_gets_instructions(self, flow, member):
        await flow.handle_member_join(member)

        member.add_roles.assert_not_awaited()
        member.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_role_failure_is_not_fatal(self, flow, store, member):
        configure(store, unverified_role_id=ROLE_ID)
        member.add_roles.side_effect = http_error(discord.Forbidden, 403, "Missing")

        await flow.handle_member_join(member)

        member.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_role_is_skipped(self, flow, store, member):
        configure(store, unverified_role_id=777)

        await flow.handle_member_join(member)

        member.add_roles.assert_not_awaited()
        member.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_dms_are_tolerated(self, flow, member):
        member.send.side_effect = http_error(discord.Forbidden, 403, "Cannot DM")
        await flow.handle_member_join(member)

    @pytest.mark.asyncio
    async def test_bots_are_ignored(self, flow, store, member):
        configure(store, unverified_role_id=ROLE_ID)
        member.bot = True

        await flow.handle_member_join(member)

        member.add_roles.assert_not_awaited()
        member.send.assert_not_awaited()


class TestDirectMessage:
    @pytest.mark.asyncio
    async def test_valid_email_is_posted_for_review(
        self, flow, store, member, audit_channel
    ):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        message = dm_message("j.bloggs@uclan.ac.uk", member)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_awaited_once()
        content = audit_channel.send.await_args.args[0]
        assert "Test User" in content
        assert "j.bloggs@uclan.ac.uk" in content
        view = audit_channel.send.await_args.kwargs["view"]
        assert isinstance(view, ReviewRequestView)
        assert view.is_finished()
        assert [item.custom_id for item in view.children] == [
            f"approve_{USER_ID}",
            f"deny_{USER_ID}",
        ]

        pending = store.get_pending(GUILD_ID, USER_ID)
        assert pending.email == "j.bloggs@uclan.ac.uk"
        assert pending.audit_channel_id == AUDIT_CHANNEL_ID
        assert pending.audit_message_id == 4444
        message.channel.send.assert_awaited_once_with(
            "Thanks! Your email has been sent to the moderators for review."
        )

    @pytest.mark.asyncio
    async def test_invalid_email_is_rejected(self, flow, store, member, audit_channel):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        message = dm_message("someone@gmail.com", member)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_not_awaited()
        reply = message.channel.send.await_args.args[0]
        assert reply.startswith("Invalid email")

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_is_rejected(
        self, flow, store, member, audit_channel
    ):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        message = dm_message("  j.bloggs@uclan.ac.uk\n", member)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_not_awaited()
        assert store.get_pending(GUILD_ID, USER_ID) is None
        reply = message.channel.send.await_args.args[0]
        assert reply.startswith("Invalid email")

    @pytest.mark.asyncio
    async def test_rate_limited_user_is_told_to_wait(
        self, flow, store, member, audit_channel
    ):
        configure(
            store,
            member_audit_channel_id=AUDIT_CHANNEL_ID,
            rate_limit_enabled=True,
            rate_limit_duration=timedelta(minutes=5),
        )

        await flow.handle_direct_message(dm_message("bad", member))
        second = dm_message("good@uclan.ac.uk", member)
        await flow.handle_direct_message(second)

        audit_channel.send.assert_not_awaited()
        reply = second.channel.send.await_args.args[0]
        assert reply.startswith("Please wait 5 minutes")

    @pytest.mark.asyncio
    async def test_rate_limit_disabled_allows_retries(
        self, flow, store, member, audit_channel
    ):
        configure(
            store,
            member_audit_channel_id=AUDIT_CHANNEL_ID,
            rate_limit_enabled=False,
            rate_limit_duration=timedelta(minutes=5),
        )

        await flow.handle_direct_message(dm_message("bad", member))
        await flow.handle_direct_message(dm_message("good@uclan.ac.uk", member))

        audit_channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_audit_channel_aborts_silently(self, flow, member, audit_channel):
        message = dm_message("good@uclan.ac.uk", member)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_not_awaited()
        message.channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sender_outside_every_guild_is_ignored(
        self, flow, store, audit_channel
    ):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        stranger = MagicMock(spec=discord.User)
        stranger.id = 5555
        stranger.bot = False
        message = dm_message("good@uclan.ac.uk", stranger)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_not_awaited()
        message.channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_guild_channel_messages_are_ignored(
        self, flow, store, member, guild, audit_channel
    ):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        message = dm_message("good@uclan.ac.uk", member)
        message.guild = guild
        message.channel = MagicMock(spec=discord.TextChannel)

        await flow.handle_direct_message(message)

        audit_channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_own_messages_are_ignored(self, flow, store, member, audit_channel):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        member.id = BOT_USER_ID

        await flow.handle_direct_message(dm_message("good@uclan.ac.uk", member))

        audit_channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_audit_send_failure_leaves_no_pending_record(
        self, flow, store, member, audit_channel
    ):
        configure(store, member_audit_channel_id=AUDIT_CHANNEL_ID)
        audit_channel.send.side_effect = http_error()
        message = dm_message("good@uclan.ac.uk", member)

        await flow.handle_direct_message(message)

        assert store.get_pending(GUILD_ID, USER_ID) is None
        message.channel.send.assert_not_awaited()
