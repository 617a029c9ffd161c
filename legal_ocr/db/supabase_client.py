"""Supabase connection helper for the result cache.

Provides a lazily-initialized Supabase client using ``SUPABASE_URL`` and
``SUPABASE_KEY`` (exposed through ``legal_ocr.config``). Only needed when
``RESULT_STORE_BACKEND=supabase``; install with ``pip install legal-ocr[supabase]``.
"""

from __future__ import annotations

import logging
import threading

from ..config import SUPABASE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

_client = None
_client_lock = threading.Lock()


def is_configured() -> bool:
    """Return True if Supabase credentials are present."""
    return bool(SUPABASE_URL and SUPABASE_KEY)


def get_client():
    """Return a cached Supabase client instance.

    Raises
    ------
    RuntimeError
        If ``SUPABASE_URL`` or ``SUPABASE_KEY`` are not set.
    ImportError
        If the ``supabase`` extra is not installed.
    """
    global _client
    with _client_lock:
        if _client is not None:
            return _client

        if not is_configured():
            raise RuntimeError(
                "Result cache is set to Supabase but credentials are missing. "
                "Set SUPABASE_URL and SUPABASE_KEY, or use RESULT_STORE_BACKEND=sqlite."
            )

        try:
            from supabase import create_client
        except ImportError as e:
            raise ImportError(
                "supabase package is not installed. "
                "Install it with: pip install 'legal-ocr[supabase]'"
            ) from e

        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
        logger.info("Supabase result cache connected to %s", SUPABASE_URL)
        return _client


def reset_client() -> None:
    """Reset the cached client (useful for testing)."""
    global _client
    with _client_lock:
        _client = None
