"""Loopback OAuth 2.0 client for the Gmail API.

Obtains Gmail credentials for a desktop application through the RFC 8252
loopback flow, keeps them in a secure store and refreshes them before use.
"""

__version__ = "0.1.0"
