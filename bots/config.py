"""Configuration helpers for the bot runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from verifier_bot.flow import VerificationSettings
from verifier_bot.store import DEFAULT_CONFIG_PATH

REQUIRED_VARS = ("DISCORD_TOKEN",)


def env_str(name: str, *, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    guild_id: int | None = None
    config_path: str = DEFAULT_CONFIG_PATH
    email_domain: str = "uclan.ac.uk"
    community_name: str = "UCLan Computing Society"
    reinvite_url: str = "https://discord.gg/CEgCy5ejag"
    default_rate_limit_minutes: int = 5

    @classmethod
    def load(cls) -> "BotConfig":
        missing = [name for name in REQUIRED_VARS if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Missing env vars: {', '.join(missing)}")

        return cls(
            discord_token=os.environ["DISCORD_TOKEN"],
            guild_id=env_int("GUILD_ID"),
            config_path=env_str("CONFIG_PATH", default=DEFAULT_CONFIG_PATH),
            email_domain=env_str("EMAIL_DOMAIN", default=cls.email_domain),
            community_name=env_str("COMMUNITY_NAME", default=cls.community_name),
            reinvite_url=env_str("REINVITE_URL", default=cls.reinvite_url),
            default_rate_limit_minutes=max(
                1, env_int("DEFAULT_RATE_LIMIT_MINUTES", default=5) or 5
            ),
        )

    def verification_settings(self) -> VerificationSettings:
        return VerificationSettings(
            email_domain=self.email_domain,
            community_name=self.community_name,
            reinvite_url=self.reinvite_url,
            default_rate_limit=timedelta(minutes=self.default_rate_limit_minutes),
        )


def read_log_level() -> str:
    level = env_str("LOG_LEVEL", default="INFO").upper()
    return level if isinstance(logging.getLevelName(level), int) else "INFO"
