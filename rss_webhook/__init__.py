"""
RSS Webhook - Poll RSS/Atom feeds and POST new items to a webhook.

A Python application that watches RSS/Atom feeds for new entries
and delivers one webhook notification per new item, remembering
what it already sent across restarts.
"""

__version__ = "1.0.0"
