"""Bank statement CSV import.

Statements are parsed against a known bank layout (or one detected from the
header row), validated row by row and stored as :class:`BankTransaction` rows
ready for matching. A bad row is reported and skipped; it does not fail the
whole file. Rows already imported for the same bank account are skipped as
duplicates.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from hashlib import sha256
from typing import Dict, List, Optional, Tuple

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import PAYMENT_CREATE
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import ZERO, parse_amount
from aibos.domains.billing.events import BILLING_BANK_STATEMENT_IMPORTED
from aibos.domains.billing.models.bank_models import BankStatementImport, BankTransaction
from aibos.domains.ledger.constants import CASH_SUBTYPES
from aibos.domains.ledger.models.ledger_models import Account
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

MAX_STATEMENT_ROWS = 1000
MAX_DESCRIPTION_LENGTH = 255
MAX_REFERENCE_LENGTH = 128
STALE_AFTER = timedelta(days=730)
DETECTION_THRESHOLD = 0.7

_DEBIT_MARKERS = ("DR", "DEBIT", "WITHDRAWAL")
_CREDIT_MARKERS = ("CR", "CREDIT", "DEPOSIT")
_non_numeric = re.compile(r"[^\d.\-]")


@dataclass(frozen=True)
class BankFormat:
    """Column layout of one bank's CSV export.

    Either ``debit_column``/``credit_column`` or ``amount_column`` must be set.
    With ``type_column`` the amount is signed by a DR/CR marker, otherwise by
    its own sign (negative is money out).
    """

    name: str
    date_column: str
    description_column: str
    date_format: str
    reference_column: Optional[str] = None
    debit_column: Optional[str] = None
    credit_column: Optional[str] = None
    amount_column: Optional[str] = None
    type_column: Optional[str] = None
    balance_column: Optional[str] = None

    @property
    def required_columns(self) -> List[str]:
        columns = [self.date_column, self.description_column]
        for column in (self.debit_column, self.credit_column, self.amount_column):
            if column:
                columns.append(column)
        return columns


BANK_FORMATS: Dict[str, BankFormat] = {
    "MAYBANK": BankFormat(
        name="Maybank",
        date_column="Date",
        description_column="Description",
        reference_column="Reference",
        debit_column="Debit",
        credit_column="Credit",
        balance_column="Balance",
        date_format="%d/%m/%Y",
    ),
    "CIMB": BankFormat(
        name="CIMB Bank",
        date_column="Transaction Date",
        description_column="Description",
        reference_column="Reference No",
        amount_column="Amount",
        type_column="Dr/Cr",
        balance_column="Balance",
        date_format="%d-%m-%Y",
    ),
    "PUBLIC_BANK": BankFormat(
        name="Public Bank",
        date_column="Date",
        description_column="Transaction Details",
        debit_column="Withdrawal",
        credit_column="Deposit",
        balance_column="Balance",
        date_format="%d/%m/%Y",
    ),
    "HONG_LEONG": BankFormat(
        name="Hong Leong Bank",
        date_column="Date",
        description_column="Description",
        reference_column="Ref No",
        debit_column="Debit Amount",
        credit_column="Credit Amount",
        balance_column="Balance",
        date_format="%d-%b-%Y",
    ),
    "RHB": BankFormat(
        name="RHB Bank",
        date_column="Transaction Date",
        description_column="Transaction Description",
        amount_column="Amount",
        type_column="Transaction Type",
        balance_column="Available Balance",
        date_format="%d/%m/%Y",
    ),
    "GENERIC": BankFormat(
        name="Generic Format",
        date_column="date",
        description_column="description",
        reference_column="reference",
        debit_column="debit",
        credit_column="credit",
        balance_column="balance",
        date_format="%Y-%m-%d",
    ),
}


@dataclass
class StatementRow:
    row_number: int
    transaction_date: date
    description: str
    reference: Optional[str]
    debit: Decimal
    credit: Decimal
    balance: Optional[Decimal]

    @property
    def fingerprint(self) -> str:
        key = "|".join(
            [
                self.transaction_date.isoformat(),
                self.description.lower(),
                str(self.debit),
                str(self.credit),
                (self.reference or "").lower(),
            ]
        )
        return sha256(key.encode("utf-8")).hexdigest()


@dataclass
class ParsedStatement:
    format_key: str
    rows: List[StatementRow] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)
    warnings: List[dict] = field(default_factory=list)
    duplicates: int = 0
    total_rows: int = 0


def _today() -> date:
    return datetime.utcnow().date()


def _header_index(fieldnames) -> Dict[str, str]:
    return {name.strip().lower(): name for name in fieldnames or [] if name}


def _read_header(content: str, skip_rows: int) -> List[str]:
    buffer = io.StringIO(content)
    for _ in range(skip_rows):
        buffer.readline()
    return next(csv.reader(buffer), [])


def detect_format(content: str, skip_rows: int = 0) -> str:
    """Pick the known layout whose columns best cover the header; GENERIC otherwise."""
    raw_headers = [h.strip() for h in _read_header(content, skip_rows) if h.strip()]
    if set(BANK_FORMATS["GENERIC"].required_columns) <= set(raw_headers):
        return "GENERIC"
    headers = {h.lower() for h in raw_headers}
    best_key, best_score = "GENERIC", 0.0
    for key, bank_format in BANK_FORMATS.items():
        if key == "GENERIC":
            continue
        required = [c.lower() for c in bank_format.required_columns]
        score = sum(1 for c in required if c in headers) / len(required)
        if score >= DETECTION_THRESHOLD and score > best_score:
            best_key, best_score = key, score
    return best_key


def _cell(row: dict, index: Dict[str, str], column: Optional[str]) -> str:
    if not column:
        return ""
    actual = index.get(column.lower())
    return (row.get(actual) or "").strip() if actual else ""


def _parse_date(raw: str, date_format: str) -> date:
    try:
        return datetime.strptime(raw, date_format).date()
    except ValueError:
        return date.fromisoformat(raw)


def _parse_number(raw: str) -> Optional[Decimal]:
    cleaned = _non_numeric.sub("", raw or "")
    if cleaned in ("", "-", "."):
        return None
    return parse_amount(cleaned)


def _amounts(row: dict, index: Dict[str, str], bank_format: BankFormat) -> Tuple[Decimal, Decimal]:
    if bank_format.debit_column and bank_format.credit_column:
        debit = _parse_number(_cell(row, index, bank_format.debit_column)) or ZERO
        credit = _parse_number(_cell(row, index, bank_format.credit_column)) or ZERO
        return debit, credit

    amount = _parse_number(_cell(row, index, bank_format.amount_column)) or ZERO
    marker = _cell(row, index, bank_format.type_column).upper()
    if marker and any(m in marker for m in _DEBIT_MARKERS):
        return amount.copy_abs(), ZERO
    if marker and any(m in marker for m in _CREDIT_MARKERS):
        return ZERO, amount.copy_abs()
    if amount < 0:
        return amount.copy_abs(), ZERO
    return ZERO, amount


def parse_statement(content: str, format_key: Optional[str] = None, skip_rows: int = 0) -> ParsedStatement:
    """Parse statement text into validated rows plus per-row errors and warnings.

    ``skip_rows`` drops preamble lines (account banners and the like) above
    the header row. Row numbers count physical lines, header included.
    """
    if not (content or "").strip():
        raise DomainError("validation_error", "Statement file is empty", {"field": "content"})
    if format_key is None:
        format_key = detect_format(content, skip_rows)
    format_key = format_key.upper()
    if format_key not in BANK_FORMATS:
        raise DomainError(
            "unknown_bank_format", f"Unknown bank format '{format_key}'", {"formats": sorted(BANK_FORMATS)}
        )
    bank_format = BANK_FORMATS[format_key]

    buffer = io.StringIO(content)
    for _ in range(skip_rows):
        buffer.readline()
    reader = csv.DictReader(buffer)
    index = _header_index(reader.fieldnames)
    missing = [c for c in bank_format.required_columns if c.lower() not in index]
    if missing:
        raise DomainError(
            "validation_error",
            f"Statement is missing {bank_format.name} columns",
            {"format": format_key, "missing_columns": missing},
        )

    parsed = ParsedStatement(format_key=format_key)
    seen = set()
    today = _today()
    for row in reader:
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        parsed.total_rows += 1
        if parsed.total_rows > MAX_STATEMENT_ROWS:
            raise DomainError(
                "validation_error",
                f"Statements are limited to {MAX_STATEMENT_ROWS} rows",
                {"max_rows": MAX_STATEMENT_ROWS},
            )
        row_number = reader.line_num + skip_rows

        raw_date = _cell(row, index, bank_format.date_column)
        description = _cell(row, index, bank_format.description_column)
        if not raw_date:
            parsed.errors.append({"row": row_number, "error": f"Missing date in column '{bank_format.date_column}'"})
            continue
        try:
            transaction_date = _parse_date(raw_date, bank_format.date_format)
        except ValueError:
            parsed.errors.append({"row": row_number, "error": f"Invalid date '{raw_date}'"})
            continue
        if not description:
            parsed.errors.append(
                {"row": row_number, "error": f"Missing description in column '{bank_format.description_column}'"}
            )
            continue
        try:
            debit, credit = _amounts(row, index, bank_format)
            balance = _parse_number(_cell(row, index, bank_format.balance_column))
        except ValueError:
            parsed.errors.append({"row": row_number, "error": "Amount is not a number"})
            continue
        if debit < 0 or credit < 0:
            parsed.errors.append({"row": row_number, "error": "Debit and credit amounts cannot be negative"})
            continue
        if debit == 0 and credit == 0:
            parsed.errors.append({"row": row_number, "error": "Transaction must have either debit or credit amount"})
            continue
        if debit > 0 and credit > 0:
            parsed.errors.append({"row": row_number, "error": "Transaction cannot have both debit and credit amounts"})
            continue

        if transaction_date > today:
            parsed.warnings.append({"row": row_number, "warning": "Transaction date is in the future"})
        elif transaction_date < today - STALE_AFTER:
            parsed.warnings.append({"row": row_number, "warning": "Transaction date is more than 2 years old"})
        if len(description) > MAX_DESCRIPTION_LENGTH:
            parsed.warnings.append(
                {"row": row_number, "warning": f"Description truncated from {len(description)} characters"}
            )
            description = description[:MAX_DESCRIPTION_LENGTH]

        statement_row = StatementRow(
            row_number=row_number,
            transaction_date=transaction_date,
            description=description,
            reference=_cell(row, index, bank_format.reference_column)[:MAX_REFERENCE_LENGTH] or None,
            debit=debit,
            credit=credit,
            balance=balance,
        )
        if statement_row.fingerprint in seen:
            parsed.duplicates += 1
            parsed.warnings.append({"row": row_number, "warning": "Duplicate transaction in this file"})
            continue
        seen.add(statement_row.fingerprint)
        parsed.rows.append(statement_row)
    return parsed


def _bank_account(scope: TenantScope, company_id: int, bank_account_id: int) -> Account:
    """Load the account under a row lock; imports into one account run one at a time."""
    account = (
        Account.query.filter_by(id=bank_account_id, tenant_id=scope.tenant_id, company_id=company_id)
        .with_for_update()
        .first()
    )
    if account is None:
        raise DomainError("account_not_found", "Bank account not found", {"account_id": bank_account_id})
    if account.account_subtype not in CASH_SUBTYPES:
        raise DomainError(
            "validation_error", "Statements must be imported into a cash or bank account", {"account_id": account.id}
        )
    return account


def import_statement(
    scope: TenantScope,
    bank_account_id: int,
    content: str,
    format_key: Optional[str] = None,
    filename: Optional[str] = None,
    skip_rows: int = 0,
) -> BankStatementImport:
    """Parse a statement and store its new transactions against ``bank_account_id``."""
    scope.require(PAYMENT_CREATE)
    company = current_company(scope)
    bank = _bank_account(scope, company.id, bank_account_id)
    parsed = parse_statement(content, format_key, skip_rows)

    known = {
        fingerprint
        for (fingerprint,) in db.session.query(BankTransaction.fingerprint)
        .filter(
            BankTransaction.bank_account_id == bank.id,
            BankTransaction.fingerprint.in_([r.fingerprint for r in parsed.rows] or [""]),
        )
        .all()
    }

    statement = BankStatementImport(
        tenant_id=scope.tenant_id,
        company_id=company.id,
        bank_account_id=bank.id,
        bank_format=parsed.format_key,
        filename=(filename or "").strip()[:255] or None,
        total_rows=parsed.total_rows,
        error_count=len(parsed.errors),
        errors=parsed.errors,
        created_by=scope.user_id,
    )
    warnings = list(parsed.warnings)
    duplicates = parsed.duplicates
    for row in parsed.rows:
        if row.fingerprint in known:
            duplicates += 1
            warnings.append({"row": row.row_number, "warning": "Transaction was already imported"})
            continue
        statement.transactions.append(
            BankTransaction(
                tenant_id=scope.tenant_id,
                company_id=company.id,
                bank_account_id=bank.id,
                row_number=row.row_number,
                transaction_date=row.transaction_date,
                description=row.description,
                reference=row.reference,
                debit=row.debit,
                credit=row.credit,
                balance=row.balance,
                fingerprint=row.fingerprint,
            )
        )
    statement.warnings = warnings
    statement.duplicate_count = duplicates
    statement.imported_count = len(statement.transactions)
    db.session.add(statement)
    db.session.flush()

    enqueue_outbox(
        BILLING_BANK_STATEMENT_IMPORTED,
        {
            "import_id": statement.id,
            "company_id": company.id,
            "bank_account_id": bank.id,
            "bank_format": statement.bank_format,
            "imported_count": statement.imported_count,
            "duplicate_count": statement.duplicate_count,
            "error_count": statement.error_count,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "bank_statement.imported",
        "bank_statement_import",
        statement.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={
            "bank_account_id": bank.id,
            "format": statement.bank_format,
            "imported": statement.imported_count,
            "duplicates": statement.duplicate_count,
            "errors": statement.error_count,
        },
    )
    db.session.commit()
    logger.info(
        "Imported %s bank transactions (%s duplicates, %s errors) into account %s",
        statement.imported_count,
        statement.duplicate_count,
        statement.error_count,
        bank.code,
    )
    return statement


def get_statement(scope: TenantScope, import_id: int) -> BankStatementImport:
    statement = BankStatementImport.query.filter_by(
        id=import_id, tenant_id=scope.tenant_id, company_id=scope.require_company()
    ).first()
    if statement is None:
        raise DomainError("not_found", "Bank statement import not found")
    return statement


def list_transactions(scope: TenantScope, import_id: Optional[int] = None, status: Optional[str] = None):
    query = BankTransaction.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if import_id:
        query = query.filter(BankTransaction.import_id == import_id)
    if status:
        query = query.filter(BankTransaction.status == status)
    return query.order_by(BankTransaction.transaction_date.desc(), BankTransaction.id.desc())
