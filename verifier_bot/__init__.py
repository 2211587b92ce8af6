"""Core of the email verification gateway.

Settings storage, rate limiting, the onboarding flow and the moderator
approval buttons live here; :mod:`bots.verification` wires them to a
discord.py client.
"""
