"""Triage Sidekick.

A local dashboard for triaging a repository's open issues and discussions:
- a background poller that notices newly opened items
- label management against GitHub
- streamed analysis turns relayed from a Claude agent
"""

__version__ = "0.1.0"

from triage_sidekick.server.config import ServerSettings

__all__ = ["__version__", "ServerSettings"]
