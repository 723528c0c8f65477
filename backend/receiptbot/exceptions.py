from __future__ import annotations


class ReceiptBotError(Exception):
    """Base error for the receipt pipeline."""


class QrDecodeError(ReceiptBotError):
    pass


class FetchError(ReceiptBotError):
    pass


class OcrError(ReceiptBotError):
    pass


class ExtractionError(ReceiptBotError):
    pass


class RecognitionError(ReceiptBotError):
    """Every recognition stage failed; ``user_message`` is shown in the chat."""

    def __init__(self, user_message: str, cause: Exception | None = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.cause = cause


class InvalidStatusTransition(ReceiptBotError):
    def __init__(self, job_id: int, expected: str, target: str) -> None:
        super().__init__(f"Job {job_id} is not {expected}; cannot move it to {target}.")
        self.job_id = job_id
        self.expected = expected
        self.target = target


class InvalidAction(ReceiptBotError):
    """Callback data that does not parse into a known action."""


class ActionRejected(ReceiptBotError):
    """A well-formed action that cannot be applied to the current state."""


class CorrectionError(ReceiptBotError):
    pass
