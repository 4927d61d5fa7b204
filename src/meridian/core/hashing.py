"""
Deterministic task identifiers.

Schedule tasks are identified by the md5 of their identifying parameters, so
re-creating a task with the same parameters on any node yields the same id and
overwrites the prior entry instead of duplicating it.

Manifesto:
    A task id must be stable across restarts and across processes:
    - **Deterministic:** Same identifying tuple always produces the same id
    - **Portable:** Plain md5 hex over a ``#``-joined string, reproducible anywhere
    - **Content-aware:** Anonymous handlers are identified by their code, not
      their (nonexistent) name

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ compute_hash("web-1", "reports", "Report", "send")         │
        │                                                            │
        │   md5("web-1#reports#Report#send") → 32-char hex           │
        └────────────────────────────────────────────────────────────┘

        ┌────────────────────────────────────────────────────────────┐
        │ handler_fingerprint(lambda: ...)                           │
        │                                                            │
        │   md5(co_code + co_consts + co_names) → 32-char hex        │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> compute_hash("web-1", "nightly", "cleanup")
    '...'  # 32-char hex string
    >>> compute_hash() == EMPTY_HASH
    True

Tags:
    hashing, idempotency, task-id, meridian

Doc-Types:
    - API Reference
"""

import hashlib
from collections.abc import Callable
from typing import Any

EMPTY_HASH = "d41d8cd98f00b204e9800998ecf8427e"
"""md5 of the empty string; reserved for the housekeeping flush task."""


def compute_hash(*values: Any) -> str:
    """
    Compute the task id for an identifying tuple.

    Values are stringified and joined with ``#`` before hashing, so
    ``compute_hash("a", "b")`` equals ``md5("a#b")``.

    Args:
        *values: Identifying components, in order

    Returns:
        32-character lowercase hex digest
    """
    joined = "#".join(str(v) for v in values)
    return hashlib.md5(joined.encode("utf-8")).hexdigest()


def handler_fingerprint(fn: Callable[..., Any]) -> str:
    """
    Content hash of a callable's code object.

    Two lambdas with the same body hash the same even when defined in
    different places; changing the body changes the hash. Callables without
    a code object (builtins, partials) fall back to their ``repr``.
    """
    code = getattr(fn, "__code__", None)
    if code is None:
        return hashlib.md5(repr(fn).encode("utf-8")).hexdigest()

    digest = hashlib.md5()
    digest.update(code.co_code)
    digest.update(repr(_stable_consts(code.co_consts)).encode("utf-8"))
    digest.update("#".join(code.co_names).encode("utf-8"))
    return digest.hexdigest()


def _stable_consts(consts: tuple) -> tuple:
    # Nested code objects repr with their memory address.
    return tuple(
        ("<code>", c.co_name, bytes(c.co_code)) if hasattr(c, "co_code") else c
        for c in consts
    )


__all__ = ["EMPTY_HASH", "compute_hash", "handler_fingerprint"]
