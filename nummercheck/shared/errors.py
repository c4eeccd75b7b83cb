"""Exception hierarchy for webhook reconciliation and status reads."""


class NummercheckError(Exception):
    """Base class for all service errors."""


class AuthenticationError(NummercheckError):
    """Webhook signature is missing, malformed, or does not match."""


class MalformedPayloadError(NummercheckError):
    """Webhook body cannot be parsed or lacks a conversation id."""


class StaleReadTimeout(NummercheckError):
    """Status reads did not converge within the retry budget.

    Never surfaced to clients: the aggregator logs it and returns the
    best-effort snapshot.

    Args:
        lookup_id: Lookup whose snapshot stayed stale.
        reasons: Staleness predicates still true on the last read.
    """

    def __init__(self, lookup_id: str, reasons: list[str]) -> None:
        self.lookup_id = lookup_id
        self.reasons = reasons
        super().__init__(f"status for lookup {lookup_id} still stale: {', '.join(reasons)}")


class UpstreamWriteFailure(NummercheckError):
    """A storage write failed while applying a webhook."""


class InvalidPhoneNumber(ValueError):
    """Phone input does not match any accepted format."""
