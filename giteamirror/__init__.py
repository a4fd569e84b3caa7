"""Mirror orchestration engine replicating GitHub repositories to Gitea.

The package is organised in layers: storage models and configuration decoding
at the bottom; the ownership resolver, rate-limit governor, retry executor and
job store in the middle; and the mirror operations, recovery manager and
scheduler on top.
"""

from __future__ import annotations

__version__ = "0.1.0"
