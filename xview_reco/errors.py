from __future__ import annotations


class XViewError(Exception):
    """Base class for all errors raised by :mod:`xview_reco`."""


class NotFoundError(XViewError):
    r"""
    A view yielded no available clusters.

    Recoverable: the caller may skip the view's contribution for the current
    processing cycle.
    """


class InvariantViolation(XViewError):
    r"""
    A broken internal-consistency precondition.

    Raised for a hit mapping to zero or several live clusters during a rewrite,
    a duplicate fit-cache insertion, or an empty destination group. The current
    view's modification must be abandoned.
    """


class ClusterStoreError(XViewError):
    """Misuse of a cluster-store primitive (create, delete, remove-hit, list ops)."""
