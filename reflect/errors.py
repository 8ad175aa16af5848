"""Reasons a reflection run stops early."""


class ReflectError(Exception):
    """Base class for run-level failures reported to the operator."""

    level = "error"


class TargetNotFound(ReflectError):
    pass


class TargetTooSmall(ReflectError):
    pass


class NoEvidence(ReflectError):
    level = "info"


class ModelUnavailable(ReflectError):
    pass


class AnalysisTransportError(ReflectError):
    """The analysis provider reported an error instead of a response."""


class AnalysisParseError(ReflectError):
    """The analysis response did not contain a usable JSON object."""


class AllEditsRejected(ReflectError):
    level = "warning"


class ResultTooSmall(ReflectError):
    """Applying the edits would shrink the document below half its size."""
