"""Runtime entry points for the email verification gateway bot."""

__all__ = ["config", "verification"]
