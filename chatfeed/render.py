"""Plain-text rendering of feed entries."""

from datetime import datetime

from .models import AuthorProfile, Entry, EntryKind


def pretty_time(dt: datetime) -> str:
    """Format a timestamp as local ``HH:MM``."""
    return dt.astimezone().strftime("%H:%M")


def format_entry(entry: Entry, profile: AuthorProfile, own: bool = False) -> str:
    """One display line for an entry."""
    who = "me" if own else profile.display_handle
    body = entry.body
    if entry.kind is not EntryKind.TEXT and entry.attachment:
        body = f"{body} <{entry.attachment.url}>"
    return f"{pretty_time(entry.created_at)} {who}: {body}"
