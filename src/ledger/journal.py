"""Double-entry journal generation for approved invoices.

Sales invoices debit Accounts Receivable with the grand total and credit
Sales plus one output-tax account per non-zero component. Purchase
invoices mirror this: Purchases (or the expense account learned for the
vendor) and the input-tax accounts are debited and Accounts Payable is
credited. A non-zero round-off adds a Round Off line.

An entry and its lines are written in one transaction and the balance is
checked inside it before commit. Posted entries are never edited: they are
reversed by a new entry with debits and credits swapped.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from src.errors import InvalidTransitionError, NotFoundError, UnbalancedEntryError
from src.extraction.schema import InvoiceData, InvoiceType
from src.utils.config import LedgerConfig
from src.utils.logger import get_logger

from .models import EntryStatus, EntryType, JournalEntry, JournalLineItem
from .store import LedgerStore, check_tenant

logger = get_logger(__name__)

ZERO = Decimal("0")

TAX_COMPONENTS = ("cgst", "sgst", "igst", "cess", "tcs")

OUTPUT_TAX_ACCOUNTS = {
    "cgst": "GST Output - CGST",
    "sgst": "GST Output - SGST",
    "igst": "GST Output - IGST",
    "cess": "GST Output - Cess",
    "tcs": "TCS Payable",
}
INPUT_TAX_ACCOUNTS = {
    "cgst": "GST Input - CGST",
    "sgst": "GST Input - SGST",
    "igst": "GST Input - IGST",
    "cess": "GST Input - Cess",
    "tcs": "TCS Receivable",
}

ACCOUNT_CODES = {
    "Accounts Receivable": "1130",
    "GST Input - CGST": "1151",
    "GST Input - SGST": "1152",
    "GST Input - IGST": "1153",
    "Accounts Payable": "2110",
    "GST Output - CGST": "2131",
    "GST Output - SGST": "2132",
    "GST Output - IGST": "2133",
    "Sales": "4100",
    "Purchases": "5100",
}


@dataclass
class JournalLine:
    """A line to be written; exactly one of ``debit``/``credit`` is non-zero."""

    account_name: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    account_code: str | None = None

    def __post_init__(self) -> None:
        if self.account_code is None:
            self.account_code = ACCOUNT_CODES.get(self.account_name)


class JournalGenerator:
    """Creates, posts, edits and reverses journal entries.

    Args:
        store: Persistence boundary providing transactions.
        config: Account names and balance tolerance.
    """

    def __init__(self, store: LedgerStore, config: LedgerConfig | None = None) -> None:
        self.store = store
        self.config = config or LedgerConfig()
        self.tolerance = Decimal(str(self.config.balance_tolerance))

    def build_lines(
        self, invoice: InvoiceData, expense_account: str | None = None
    ) -> list[JournalLine]:
        """Construct the debit and credit lines for an invoice.

        Args:
            invoice: Approved invoice with a grand total.
            expense_account: Debit account for a purchase; defaults to Purchases.

        Returns:
            Lines in posting order, zero-amount lines omitted.

        Raises:
            ValueError: If the invoice has no grand total.
        """
        if invoice.grand_total is None:
            raise ValueError(f"Invoice {invoice.invoice_number} has no grand total")

        total = invoice.grand_total
        subtotal = invoice.subtotal
        if subtotal is None:
            subtotal = total - invoice.tax_total - invoice.round_off

        cfg = self.config
        sales = invoice.invoice_type == InvoiceType.SALES
        lines: list[JournalLine] = []

        if sales:
            lines.append(JournalLine(cfg.receivable_account, debit=total))
            lines.append(JournalLine(cfg.sales_account, credit=subtotal))
            for component in TAX_COMPONENTS:
                amount = getattr(invoice, component)
                if amount:
                    lines.append(JournalLine(OUTPUT_TAX_ACCOUNTS[component], credit=amount))
        else:
            lines.append(JournalLine(expense_account or cfg.purchase_account, debit=subtotal))
            for component in TAX_COMPONENTS:
                amount = getattr(invoice, component)
                if amount:
                    lines.append(JournalLine(INPUT_TAX_ACCOUNTS[component], debit=amount))

        round_off = invoice.round_off
        if round_off:
            # A positive round-off increases the amount owed, so it sits on
            # the same side as the tax lines.
            on_debit = (round_off > 0) != sales
            lines.append(
                JournalLine(
                    cfg.round_off_account,
                    debit=abs(round_off) if on_debit else ZERO,
                    credit=ZERO if on_debit else abs(round_off),
                )
            )

        if not sales:
            lines.append(JournalLine(cfg.payable_account, credit=total))

        return [line for line in lines if line.debit or line.credit]

    def _check_totals(self, debits: Decimal, credits: Decimal, label: str) -> None:
        if abs(debits - credits) > self.tolerance:
            logger.error(
                "Rejecting unbalanced journal entry %s: debits=%s credits=%s",
                label,
                debits,
                credits,
            )
            raise UnbalancedEntryError(debits, credits)

    def _check_balance(self, entry: JournalEntry) -> None:
        self._check_totals(entry.total_debits, entry.total_credits, entry.id)

    def check_lines(self, lines: list[JournalLine]) -> None:
        """Raise :class:`UnbalancedEntryError` if ``lines`` do not balance."""
        self._check_totals(
            sum((line.debit for line in lines), ZERO),
            sum((line.credit for line in lines), ZERO),
            "(unsaved)",
        )

    @staticmethod
    def _line_rows(lines: list[JournalLine], document_id: str | None) -> list[JournalLineItem]:
        rows: list[JournalLineItem] = []
        for position, line in enumerate(lines):
            if line.debit < 0 or line.credit < 0 or bool(line.debit) == bool(line.credit):
                raise ValueError(
                    f"Line '{line.account_name}' must have exactly one positive side"
                )
            rows.append(
                JournalLineItem(
                    position=position,
                    account_name=line.account_name,
                    account_code=line.account_code,
                    debit_amount=line.debit,
                    credit_amount=line.credit,
                    reference_document_id=document_id,
                )
            )
        return rows

    def _insert(
        self,
        session: Session,
        client_id: str,
        accountant_id: str,
        entry_date: date,
        entry_type: str,
        narration: str,
        lines: list[JournalLine],
        status: str,
        document_id: str | None = None,
        is_auto_generated: bool = False,
        reversal_of_id: str | None = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            client_id=client_id,
            accountant_id=accountant_id,
            document_id=document_id,
            entry_date=entry_date,
            entry_type=entry_type,
            narration=narration,
            is_auto_generated=is_auto_generated,
            status=status,
            reversal_of_id=reversal_of_id,
        )
        entry.lines = self._line_rows(lines, document_id)
        session.add(entry)
        session.flush()
        self._check_balance(entry)
        return entry

    def _load(
        self, session: Session, entry_id: str, client_id: str, accountant_id: str
    ) -> JournalEntry:
        entry = session.get(JournalEntry, entry_id, options=[selectinload(JournalEntry.lines)])
        if entry is None:
            raise NotFoundError(f"Journal entry {entry_id} not found")
        check_tenant(entry, client_id, accountant_id)
        return entry

    def generate(
        self,
        invoice: InvoiceData,
        client_id: str,
        accountant_id: str,
        document_id: str | None = None,
        entry_date: date | None = None,
        expense_account: str | None = None,
    ) -> JournalEntry:
        """Create and post the journal entry for an approved invoice.

        The entry, its lines and the invoice history row are committed
        together or not at all.

        Args:
            invoice: Approved invoice.
            client_id: Owning client.
            accountant_id: Owning accountant.
            document_id: Source document, if any.
            entry_date: Posting date; defaults to the invoice date, then today.
            expense_account: Purchase debit account; the vendor's learned
                account, then Purchases, when omitted.

        Returns:
            The posted entry.

        Raises:
            UnbalancedEntryError: If debits and credits differ beyond tolerance.
            TenantMismatchError: If the document belongs to another tenant.
        """
        if expense_account is None and invoice.invoice_type == InvoiceType.PURCHASE:
            expense_account = self.store.expense_account(accountant_id, invoice.vendor.name)
        lines = self.build_lines(invoice, expense_account)
        narration = f"Auto-generated from {invoice.invoice_type} invoice {invoice.invoice_number or '(unnumbered)'}"
        with self.store.transaction() as session:
            self.store.ensure_client(session, client_id, accountant_id)
            entry = self._insert(
                session,
                client_id,
                accountant_id,
                entry_date or invoice.invoice_date or date.today(),
                str(invoice.invoice_type),
                narration,
                lines,
                EntryStatus.POSTED,
                document_id=document_id,
                is_auto_generated=True,
            )
            self.store.add_invoice(
                session,
                invoice,
                client_id,
                accountant_id,
                document_id=document_id,
                journal_entry_id=entry.id,
            )
        logger.info(
            "Posted journal entry %s for invoice %s (%d lines, %s)",
            entry.id,
            invoice.invoice_number,
            len(entry.lines),
            entry.total_debits,
        )
        return entry

    def create_entry(
        self,
        client_id: str,
        accountant_id: str,
        entry_date: date,
        narration: str,
        lines: list[JournalLine],
        entry_type: str = EntryType.OTHER,
        status: str = EntryStatus.DRAFT,
    ) -> JournalEntry:
        """Create a manual entry, as a draft unless ``status`` says otherwise.

        Raises:
            UnbalancedEntryError: If debits and credits differ beyond tolerance.
        """
        with self.store.transaction() as session:
            self.store.ensure_client(session, client_id, accountant_id)
            entry = self._insert(
                session, client_id, accountant_id, entry_date, entry_type, narration, lines, status
            )
        logger.info("Created %s journal entry %s", status, entry.id)
        return entry

    def get_entry(self, entry_id: str, client_id: str, accountant_id: str) -> JournalEntry:
        """Load an entry with its lines.

        Raises:
            NotFoundError: If the entry does not exist.
            TenantMismatchError: If it belongs to another tenant.
        """
        with self.store.transaction() as session:
            entry = self._load(session, entry_id, client_id, accountant_id)
            return entry

    def post(self, entry_id: str, client_id: str, accountant_id: str) -> JournalEntry:
        """Move a draft entry to posted after re-checking its balance."""
        with self.store.transaction() as session:
            entry = self._load(session, entry_id, client_id, accountant_id)
            if entry.status != EntryStatus.DRAFT:
                raise InvalidTransitionError("journal entry", entry.status, EntryStatus.POSTED)
            self._check_balance(entry)
            entry.status = EntryStatus.POSTED
        logger.info("Posted journal entry %s", entry_id)
        return entry

    def reverse(
        self,
        entry_id: str,
        client_id: str,
        accountant_id: str,
        reason: str,
        reversal_date: date | None = None,
    ) -> JournalEntry:
        """Reverse a posted entry.

        Inserts a posted adjustment entry with every line's debit and credit
        swapped and marks the original ``reversed``; both changes commit
        together.

        Returns:
            The new reversing entry.

        Raises:
            InvalidTransitionError: If the entry is not posted.
        """
        with self.store.transaction() as session:
            original = self._load(session, entry_id, client_id, accountant_id)
            if original.status != EntryStatus.POSTED:
                raise InvalidTransitionError(
                    "journal entry", original.status, EntryStatus.REVERSED
                )
            swapped = [
                JournalLine(
                    line.account_name,
                    debit=line.credit_amount,
                    credit=line.debit_amount,
                    account_code=line.account_code,
                )
                for line in original.lines
            ]
            reversal = self._insert(
                session,
                client_id,
                accountant_id,
                reversal_date or date.today(),
                EntryType.ADJUSTMENT,
                f"Reversal of {original.narration} - {reason}",
                swapped,
                EntryStatus.POSTED,
                document_id=original.document_id,
                reversal_of_id=original.id,
            )
            original.status = EntryStatus.REVERSED
        logger.info("Reversed journal entry %s with %s", entry_id, reversal.id)
        return reversal

    def update_draft_lines(
        self,
        entry_id: str,
        client_id: str,
        accountant_id: str,
        lines: list[JournalLine],
    ) -> JournalEntry:
        """Replace all lines of a draft entry.

        Raises:
            InvalidTransitionError: If the entry is posted or reversed.
            UnbalancedEntryError: If the new lines do not balance.
        """
        with self.store.transaction() as session:
            entry = self._load(session, entry_id, client_id, accountant_id)
            if entry.status != EntryStatus.DRAFT:
                raise InvalidTransitionError("journal entry", entry.status, EntryStatus.DRAFT)
            entry.lines.clear()
            session.flush()
            entry.lines.extend(self._line_rows(lines, entry.document_id))
            session.flush()
            self._check_balance(entry)
        return entry

    def delete_draft(self, entry_id: str, client_id: str, accountant_id: str) -> None:
        """Delete a draft entry and its lines.

        Raises:
            InvalidTransitionError: If the entry is posted or reversed.
        """
        with self.store.transaction() as session:
            entry = self._load(session, entry_id, client_id, accountant_id)
            if entry.status != EntryStatus.DRAFT:
                raise InvalidTransitionError("journal entry", entry.status, "deleted")
            session.delete(entry)
        logger.info("Deleted draft journal entry %s", entry_id)

    def summary(
        self,
        client_id: str,
        accountant_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, Any]:
        """Count entries per status and total the posted debits and credits."""
        query = select(JournalEntry).where(
            JournalEntry.client_id == client_id,
            JournalEntry.accountant_id == accountant_id,
        )
        if start is not None:
            query = query.where(JournalEntry.entry_date >= start)
        if end is not None:
            query = query.where(JournalEntry.entry_date <= end)

        with self.store.transaction() as session:
            entries = session.scalars(query).all()
            posted = [e for e in entries if e.status == EntryStatus.POSTED]
            return {
                "total": len(entries),
                "posted": len(posted),
                "draft": sum(1 for e in entries if e.status == EntryStatus.DRAFT),
                "reversed": sum(1 for e in entries if e.status == EntryStatus.REVERSED),
                "total_debits": sum((e.total_debits for e in posted), ZERO),
                "total_credits": sum((e.total_credits for e in posted), ZERO),
            }
