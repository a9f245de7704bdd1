"""FastAPI server for the triage dashboard.

Design intent:
- Keep intake tracking and agent-stream logic in ``triage_sidekick.intake`` and
  ``triage_sidekick.agent``
- Keep server-specific concerns (routing, sockets, CORS, config files) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from triage_sidekick.server.app import create_app
