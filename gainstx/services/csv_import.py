"""
gainstx/services/csv_import.py

Parsing and loading of generic transaction files (the "file" source).

Expected columns:
    date, source, currency, type, amount, fee, fee_rate,
    exchange_currency, exchange_value, usd_value

Lines starting with '#' and blank lines are ignored. Every row is validated
up front (see FileTransactionRow); nothing is written unless the whole file
parses.

Loading a file replaces everything previously imported for the sources it
lists, so re-importing the same file is idempotent.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy.orm import Session

from gainstx.constants import TX_FEE
from gainstx.errors import ImportValidationError
from gainstx.models.account import Account
from gainstx.models.transaction import Transaction
from gainstx.schemas.csv_import import CSVParseError, FileTransactionRow
from gainstx.services.ledger import find_or_create_account, save_transaction, truncate_disposals
from gainstx.services.pricing import round_usd, to_decimal, truncate_crypto

logger = logging.getLogger(__name__)

# Required columns in the CSV
REQUIRED_COLUMNS = {"date", "source", "currency", "type", "amount"}

# All valid columns
ALL_COLUMNS = REQUIRED_COLUMNS | {
    "fee", "fee_rate", "exchange_currency", "exchange_value", "usd_value",
}

DECIMAL_COLUMNS = ("amount", "fee", "fee_rate", "exchange_value", "usd_value")

FILE_SOURCE_PREFIX = "file:"


@dataclass
class ParseResult:
    """Result of parsing a CSV file."""
    rows: List[FileTransactionRow] = field(default_factory=list)
    errors: List[CSVParseError] = field(default_factory=list)
    warnings: List[CSVParseError] = field(default_factory=list)

    @property
    def can_import(self) -> bool:
        """Returns True if there are no errors (warnings are OK)."""
        return len(self.errors) == 0

    @property
    def sources(self) -> List[str]:
        return sorted({f"{FILE_SOURCE_PREFIX}{row.source}" for row in self.rows})

    def raise_for_errors(self) -> None:
        if self.errors:
            first = self.errors[0]
            message = first.message
            if len(self.errors) > 1:
                message += f" (and {len(self.errors) - 1} more errors)"
            raise ImportValidationError(message, row_number=first.row_number)


@dataclass
class ImportResult:
    sources: List[str] = field(default_factory=list)
    imported_count: int = 0
    fee_count: int = 0
    deleted_count: int = 0
    warnings: List[CSVParseError] = field(default_factory=list)


class AccountCache:
    """
    Accounts resolved during one import run, keyed
    'file:<source>:<currency>'. Each account is looked up (or created) in
    the database at most once per run.
    """

    def __init__(self):
        self._accounts: Dict[str, Account] = {}

    def __len__(self):
        return len(self._accounts)

    def get(self, db: Session, source: str, currency: str) -> Account:
        reference = f"{FILE_SOURCE_PREFIX}{source}:{currency}"
        account = self._accounts.get(reference)
        if account is None:
            account = find_or_create_account(
                db,
                source=f"{FILE_SOURCE_PREFIX}{source}",
                external_reference=reference,
                currency=currency,
                display_name=f"File ({source} - {currency})",
            )
            self._accounts[reference] = account
        return account


# ------------------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------------------
def parse_csv_file(content) -> ParseResult:
    """
    Parse CSV content (bytes or str) and return validated rows with
    errors/warnings. Row numbers are line numbers in the original file.
    """
    result = ParseResult()

    text = _decode(content, result)
    if text is None:
        return result

    # Drop comment and blank lines, remembering where each kept line came from
    kept_lines = []
    line_numbers = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        kept_lines.append(line)
        line_numbers.append(line_number)

    reader = csv.reader(kept_lines)
    try:
        header = next(reader)
    except StopIteration:
        result.errors.append(CSVParseError(
            row_number=0,
            message="CSV file is empty or has no headers.",
            severity="error"
        ))
        return result

    # Normalize headers (lowercase, strip whitespace)
    headers = [h.lower().strip() for h in header]

    missing_columns = REQUIRED_COLUMNS - set(headers)
    if missing_columns:
        result.errors.append(CSVParseError(
            row_number=line_numbers[0],
            message=f"Missing required columns: {', '.join(sorted(missing_columns))}",
            severity="error"
        ))
        return result

    unknown_columns = set(h for h in headers if h) - ALL_COLUMNS
    if unknown_columns:
        result.warnings.append(CSVParseError(
            row_number=line_numbers[0],
            message=f"Ignoring unknown columns: {', '.join(sorted(unknown_columns))}",
            severity="warning"
        ))

    for values in reader:
        row_number = line_numbers[reader.line_num - 1]
        row = {
            name: (value.strip() if value else "")
            for name, value in zip(headers, values)
            if name in ALL_COLUMNS
        }
        parsed = _validate_row(row, row_number, result)
        if parsed is not None:
            result.rows.append(parsed)

    if not result.rows and not result.errors:
        result.errors.append(CSVParseError(
            row_number=0,
            message="No valid transactions found in file.",
            severity="error"
        ))

    return result


def _decode(content, result: ParseResult) -> Optional[str]:
    if isinstance(content, str):
        return content
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    result.errors.append(CSVParseError(
        row_number=0,
        message="File encoding not supported. Please save as UTF-8.",
        severity="error"
    ))
    return None


def _validate_row(row: Dict[str, str], row_number: int, result: ParseResult) -> Optional[FileTransactionRow]:
    date_str = row.get("date", "")
    timestamp = _parse_date(date_str)
    if timestamp is None:
        result.errors.append(CSVParseError(
            row_number=row_number,
            column="date",
            message=f"Invalid date '{date_str}'. Use ISO8601 (e.g., 2024-01-15T10:30:00Z).",
            severity="error"
        ))
        return None

    values = {"row_number": row_number, "date": timestamp}
    for name in ("source", "currency", "type", "exchange_currency"):
        if row.get(name):
            values[name] = row[name]

    for name in DECIMAL_COLUMNS:
        raw = row.get(name, "")
        if not raw:
            continue
        amount = _parse_decimal(raw)
        if amount is None:
            result.errors.append(CSVParseError(
                row_number=row_number,
                column=name,
                message=f"Invalid number '{raw}' in column '{name}'.",
                severity="error"
            ))
            return None
        values[name] = amount

    try:
        return FileTransactionRow(**values)
    except ValidationError as e:
        for err in e.errors():
            column = ".".join(str(part) for part in err["loc"]) or None
            result.errors.append(CSVParseError(
                row_number=row_number,
                column=column,
                message=f"{column}: {err['msg']}" if column else err["msg"],
                severity="error"
            ))
        return None


def _parse_date(date_str: str) -> Optional[datetime]:
    """Parse an ISO8601-ish date string into a UTC datetime."""
    if not date_str:
        return None
    try:
        dt = date_parser.isoparse(date_str)
    except ValueError:
        try:
            dt = date_parser.parse(date_str)
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_decimal(value: str) -> Optional[Decimal]:
    # Remove commas (thousand separators)
    value = value.replace(",", "")
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


# ------------------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------------------
def purge_sources(db: Session, sources: List[str]) -> int:
    """
    Delete every transaction previously imported for these sources. Rows on
    other sources that were linked to them as transfers are unlinked first,
    and the Disposal table is emptied since its rows reference transactions
    by id. The next gains run rebuilds it.
    """
    if not sources:
        return 0

    doomed_ids = [
        tx_id for (tx_id,) in
        db.query(Transaction.id).filter(Transaction.source.in_(sources)).all()
    ]
    if not doomed_ids:
        return 0

    (
        db.query(Transaction)
        .filter(Transaction.transfer_transaction_id.in_(doomed_ids))
        .update({Transaction.transfer_transaction_id: None}, synchronize_session=False)
    )
    truncate_disposals(db)
    deleted = (
        db.query(Transaction)
        .filter(Transaction.id.in_(doomed_ids))
        .delete(synchronize_session=False)
    )
    db.flush()
    db.expire_all()
    logger.warning(f"Deleted {deleted} existing file transactions from {', '.join(sources)}")
    return deleted


def trade_fee(row: FileTransactionRow) -> Optional[Decimal]:
    """
    Absolute fee charged by a fee_rate, taken on the received side of the
    trade (the positive amount, else the positive exchange value) and
    truncated to 8 decimal places.
    """
    if not row.fee_rate:
        return None
    if row.amount > 0:
        value = row.amount
    elif row.exchange_value is not None and row.exchange_value > 0:
        value = row.exchange_value
    else:
        return None
    return truncate_crypto(value * row.fee_rate)


def build_transaction(account: Account, row: FileTransactionRow) -> Transaction:
    fee = trade_fee(row)
    amount = row.amount
    exchange_value = row.exchange_value

    # the fee is deducted from whatever the account received
    if fee:
        if amount > 0:
            amount = amount - fee
        else:
            exchange_value = exchange_value - fee

    return Transaction(
        account_id=account.id,
        timestamp=row.date,
        type=row.type.value,
        source=account.source,
        source_amount=row.amount,
        source_type="file",
        amount=amount,
        currency=account.currency,
        exchange_currency=row.exchange_currency,
        exchange_value=exchange_value,
        usd_value=row.usd_value,
    )


def build_fee_transaction(account: Account, tx: Transaction, fee: Decimal) -> Transaction:
    """Separate fee row for the miner fee paid on a send."""
    fee_amount = -abs(fee)
    fee_tx = Transaction(
        account_id=account.id,
        timestamp=tx.timestamp,
        type=TX_FEE,
        source=account.source,
        source_amount=fee_amount,
        source_type="file_fee",
        amount=fee_amount,
        currency=account.currency,
    )
    if tx.usd_price is not None:
        fee_tx.usd_value = round_usd(abs(to_decimal(tx.usd_price) * fee_amount))
    return fee_tx


def import_file(db: Session, content, cache: Optional[AccountCache] = None) -> ImportResult:
    """
    Parse and load one file. Raises ImportValidationError (nothing written)
    if any row is invalid; otherwise replaces the file's sources and commits.
    """
    parsed = parse_csv_file(content)
    parsed.raise_for_errors()

    cache = cache if cache is not None else AccountCache()
    result = ImportResult(sources=parsed.sources, warnings=parsed.warnings)

    try:
        result.deleted_count = purge_sources(db, result.sources)

        for row in parsed.rows:
            account = cache.get(db, row.source, row.currency)
            tx = save_transaction(db, build_transaction(account, row))
            result.imported_count += 1

            # miner fees are only booked on the sending side
            if row.amount < 0 and row.fee:
                save_transaction(db, build_fee_transaction(account, tx, row.fee))
                result.fee_count += 1

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Imported {result.imported_count} transactions and {result.fee_count} fees "
        f"from {', '.join(result.sources)}"
    )
    return result


def generate_template_csv() -> str:
    """CSV template with headers and sample rows."""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow([
        "date", "source", "currency", "type", "amount", "fee", "fee_rate",
        "exchange_currency", "exchange_value", "usd_value",
    ])
    writer.writerow([
        "2017-01-15T10:30:00Z", "ledger", "BTC", "buy", "0.5", "", "",
        "USD", "-450.00", "",
    ])
    writer.writerow([
        "2017-02-01T09:00:00Z", "ledger", "BTC", "send", "-0.2", "0.0001", "",
        "", "", "200.00",
    ])
    writer.writerow([
        "2017-02-01T09:10:00Z", "paper", "BTC", "receive", "0.2", "", "",
        "", "", "",
    ])
    writer.writerow([
        "2017-03-10T12:00:00Z", "ledger", "BTC", "sell", "-0.1", "", "0.0025",
        "USD", "125.00", "",
    ])

    return output.getvalue()
