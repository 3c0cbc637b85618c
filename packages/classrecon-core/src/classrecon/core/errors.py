"""Exception hierarchy for hard failures.

Expected, frequent outcomes (an offset missing from a table, a call count
mismatch) are not exceptions; they are
:class:`~classrecon.core.types.results.AttributionResult` rejections.
"""

from __future__ import annotations


class ClassReconError(Exception):
    """Base class for all classrecon errors."""


class StructuralError(ClassReconError):
    """A class model violates a structural invariant.

    Cyclic inheritance, a malformed descriptor, an unknown base or
    inconsistent index arithmetic.  Fatal to one class or function only.
    """


class AbiMismatchError(ClassReconError):
    """The binary does not follow the ABI the analysis assumes.

    Fatal to the whole run.
    """


class UnsupportedAbiError(AbiMismatchError):
    """The ABI is recognized but its parameter passing is not supported."""


class AnalysisCancelled(ClassReconError):
    """Raised at a safe point after cancellation was requested."""
