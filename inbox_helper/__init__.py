"""Inbox Helper - Gmail triage into user-defined buckets"""

from __future__ import annotations

__version__ = "0.1.0"
