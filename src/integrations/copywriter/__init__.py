"""Outreach copywriter integration."""

from src.integrations.copywriter.client import CopywriterClient, CopywriterError, OutreachCopy, get_copywriter_client

__all__ = ["CopywriterClient", "CopywriterError", "OutreachCopy", "get_copywriter_client"]
