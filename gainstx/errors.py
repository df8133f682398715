"""
gainstx/errors.py

Exception hierarchy for the pipeline. Everything except MissingPriceError
is fatal and aborts the current run; MissingPriceError only stops the gains
walk for one currency.

'status_code' is the HTTP status the API answers with when the error
reaches a router.
"""


class GainsTxError(Exception):
    """Base class for all pipeline errors."""
    status_code = 500


class ReconciliationError(GainsTxError):
    """Mismatched or unreconciled transfers remain after reconciliation."""
    status_code = 409

    def __init__(self, message, transactions=None):
        super().__init__(message)
        self.transactions = list(transactions or [])


class TransferFeeError(GainsTxError):
    """A matched transfer received more than was sent."""
    status_code = 409


class MissingLotError(GainsTxError):
    """A disposal needed an open lot but none remained."""
    status_code = 409


class MissingPriceError(GainsTxError):
    """A transaction in the gains walk has no usd_price."""
    status_code = 409


class DisposalConfigError(GainsTxError):
    """The disposal-method configuration for a year is missing or invalid."""
    status_code = 422


class BackfillError(GainsTxError):
    """The two legs of a trade disagree while copying USD values."""
    status_code = 409


class PriceLookupError(GainsTxError):
    """The price oracle could not be reached."""
    status_code = 502


class ImportValidationError(GainsTxError):
    """A row of an imported file failed validation."""
    status_code = 422

    def __init__(self, message, row_number=None):
        if row_number is not None:
            message = f"Row {row_number}: {message}"
        super().__init__(message)
        self.row_number = row_number
