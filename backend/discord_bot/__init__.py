"""Spolka Discord bot: per-guild birthdays with a rotating birthday role."""
