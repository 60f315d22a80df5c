"""Build identifier stamped into every job record.

Must match the ``version`` declared in ``pyproject.toml``.
"""

from __future__ import annotations

__version__ = "0.4.0"

SERVICE_VERSION = __version__
