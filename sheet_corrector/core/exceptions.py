"""
Exception hierarchy for the correction pipeline.

Only the run-level errors (no detector, initialization timeout, a run already
active, unknown exam, unreadable input file) ever reach the caller of a batch.
Everything else is recovered per page and surfaced as a review reason.
"""


class SheetCorrectorError(Exception):
    """Base class for every error raised by this package."""


class ConcurrentRunError(SheetCorrectorError):
    """A batch run was requested while another one is still active."""


class DetectionUnavailableError(SheetCorrectorError):
    """The mark detector is missing or its model cannot be found."""


class CollaboratorInitTimeout(SheetCorrectorError):
    """A collaborator did not finish initializing within the allowed time."""


class ExamNotFoundError(SheetCorrectorError):
    pass


class MissingAnswerKeyError(SheetCorrectorError):
    """The exam has no finalized answer key for the requested student."""


class PageDecodeError(SheetCorrectorError):
    pass


class BufferReleasedError(SheetCorrectorError):
    """An image buffer was used after its owner released it."""
