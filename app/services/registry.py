"""
Process-wide request coalescer.

One ``RequestCoalescer`` is constructed per process and shared by the
snapshot, history and ticker services so that interactive requests and the
background refresh jobs never duplicate an in-flight fetch for the same key.
"""

from __future__ import annotations

from app.services.data_providers.resilience import RequestCoalescer


_coalescer: RequestCoalescer | None = None


def get_request_coalescer() -> RequestCoalescer:
    """Get the process-wide coalescer, creating it on first use."""
    global _coalescer
    if _coalescer is None:
        _coalescer = RequestCoalescer("market_data")
    return _coalescer


def reset_request_coalescer() -> None:
    """Drop the process-wide coalescer (a fresh one is built on next use)."""
    global _coalescer
    _coalescer = None
