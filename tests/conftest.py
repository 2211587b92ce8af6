from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from verifier_bot.flow import VerificationSettings
from verifier_bot.rate_limit import RateLimiter
from verifier_bot.store import ConfigStore

GUILD_ID = 1111
USER_ID = 12345
AUDIT_CHANNEL_ID = 2222
ROLE_ID = 3333
BOT_USER_ID = 9999


def http_error(cls=discord.HTTPException, status: int = 500, text: str = "boom"):
    response = MagicMock()
    response.status = status
    response.reason = text
    return cls(response, text)


@pytest.fixture
def store(tmp_path) -> ConfigStore:
    config_store = ConfigStore(tmp_path / "data" / "config.json")
    config_store.load()
    return config_store


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture
def settings() -> VerificationSettings:
    return VerificationSettings()


@pytest.fixture
def role():
    mock_role = MagicMock(spec=discord.Role)
    mock_role.id = ROLE_ID
    return mock_role


@pytest.fixture
def audit_channel():
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = AUDIT_CHANNEL_ID
    sent = MagicMock(spec=discord.Message)
    sent.id = 4444
    channel.send = AsyncMock(return_value=sent)
    return channel


@pytest.fixture
def member():
    mock_member = MagicMock(spec=discord.Member)
    mock_member.id = USER_ID
    mock_member.bot = False
    mock_member.display_name = "Test User"
    mock_member.mention = f"<@{USER_ID}>"
    mock_member.send = AsyncMock()
    mock_member.add_roles = AsyncMock()
    mock_member.remove_roles = AsyncMock()
    return mock_member


@pytest.fixture
def guild(member, role, audit_channel):
    mock_guild = MagicMock(spec=discord.Guild)
    mock_guild.id = GUILD_ID
    members = {USER_ID: member}
    channels = {AUDIT_CHANNEL_ID: audit_channel}
    roles = {ROLE_ID: role}
    mock_guild.get_member.side_effect = members.get
    mock_guild.get_channel.side_effect = channels.get
    mock_guild.get_role.side_effect = roles.get
    mock_guild.fetch_member = AsyncMock(
        side_effect=http_error(discord.NotFound, 404, "Unknown Member")
    )
    mock_guild.kick = AsyncMock()
    member.guild = mock_guild
    return mock_guild


@pytest.fixture
def client(guild):
    mock_client = MagicMock(spec=discord.Client)
    mock_client.user = MagicMock()
    mock_client.user.id = BOT_USER_ID
    mock_client.guilds = [guild]
    mock_client.fetch_channel = AsyncMock(
        side_effect=http_error(discord.NotFound, 404, "Unknown Channel")
    )
    return mock_client


@pytest.fixture
def make_interaction(client, guild):
    """Build a component interaction carrying ``custom_id``."""

    def factory(custom_id: str, *, in_guild: bool = True):
        interaction = MagicMock()
        interaction.type = discord.InteractionType.component
        interaction.data = {"custom_id": custom_id}
        interaction.client = client
        interaction.guild = guild if in_guild else None
        interaction.guild_id = guild.id if in_guild else None
        interaction.user = MagicMock()
        interaction.user.__str__.return_value = "Moderator"
        interaction.response.defer = AsyncMock()
        interaction.edit_original_response = AsyncMock()
        interaction.message = MagicMock(spec=discord.Message)
        interaction.message.edit = AsyncMock()
        return interaction

    return factory
