"""Align Slack usergroups to a Google Sheets member roster."""

__version__ = "0.1.0"
