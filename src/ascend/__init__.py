"""Ascend monetization and progression core."""
