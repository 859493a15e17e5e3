"""Response payload builders shared by the routers."""

from __future__ import annotations

from typing import Any

from inbox_helper.storage.models import InboxView, ThreadSummary


def inbox_payload(view: InboxView) -> dict[str, Any]:
    return view.model_dump(by_alias=True)


def thread_payload(thread: ThreadSummary) -> dict[str, Any]:
    return thread.model_dump(by_alias=True)
