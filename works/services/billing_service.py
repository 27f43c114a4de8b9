"""
Billing trigger: turns a completed period (or one-off work) into exactly one
invoice.

The ``is_billed`` flag is claimed with a conditional UPDATE before anything
else is written, so two concurrent completions cannot both produce an
invoice. The claim, the invoice, its line item and the ``invoice`` link are
committed together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from ..models import Account, Invoice, InvoiceItem, Period, Work, WorkActivity
from ..validation.errors import NotFoundError, TransactionFailureError
from .activity_service import ActivityService

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


@dataclass
class BillingOutcome:
    BILLED = "billed"
    ALREADY_BILLED = "already_billed"
    NOT_ELIGIBLE = "not_eligible"
    SKIPPED = "skipped"
    FAILED = "failed"

    status: str
    invoice: Optional[Invoice] = None
    message: str = ""

    @property
    def billed(self) -> bool:
        return self.status == self.BILLED


class BillingService:

    @staticmethod
    def tax_rate_for(work: Work) -> Decimal:
        if work.service.tax_rate is not None:
            return work.service.tax_rate
        return Decimal(str(settings.WORKS_DEFAULT_TAX_RATE))

    @staticmethod
    def calculate_totals(subtotal: Decimal, tax_rate: Decimal):
        subtotal = Decimal(subtotal).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        tax_amount = (subtotal * tax_rate / Decimal('100')).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        return subtotal, tax_amount, subtotal + tax_amount

    @staticmethod
    def _allocate_invoice_number(account_id: int) -> str:
        account = Account.objects.select_for_update().get(pk=account_id)
        number = account.next_invoice_number
        Account.objects.filter(pk=account.pk).update(next_invoice_number=F('next_invoice_number') + 1)

        prefix = account.invoice_prefix or settings.WORKS_INVOICE_PREFIX
        width = account.invoice_number_width or settings.WORKS_INVOICE_NUMBER_WIDTH
        return f"{prefix}-{number:0{width}d}"

    @classmethod
    def _create_invoice(
        cls,
        work: Work,
        subtotal: Decimal,
        description: str,
        now: datetime,
        period: Optional[Period] = None,
        notes: str = "",
    ) -> Invoice:
        tax_rate = cls.tax_rate_for(work)
        subtotal, tax_amount, total = cls.calculate_totals(subtotal, tax_rate)
        invoice_date = timezone.localdate(now)

        invoice = Invoice.objects.create(
            account_id=work.account_id,
            customer_id=work.customer_id,
            work=work,
            period=period,
            invoice_number=cls._allocate_invoice_number(work.account_id),
            status=Invoice.Status.PENDING,
            invoice_date=invoice_date,
            due_date=invoice_date + timedelta(days=settings.WORKS_INVOICE_PAYMENT_TERMS_DAYS),
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total_amount=total,
            notes=notes,
        )
        InvoiceItem.objects.create(
            invoice=invoice,
            description=description,
            quantity=Decimal('1'),
            unit_price=subtotal,
            tax_rate=tax_rate,
            amount=total,
        )
        return invoice

    @staticmethod
    def _skip(work: Work, period: Optional[Period], label: str, actor, now: datetime) -> BillingOutcome:
        message = f"No billing amount set for {label}; invoice it manually"
        logger.warning(f"Billing skipped for work {work.id}: {message}")
        last = WorkActivity.objects.filter(work=work, period=period).order_by('-timestamp', '-id').first()
        if last is not None and last.action == WorkActivity.Action.BILLING_SKIPPED:
            return BillingOutcome(BillingOutcome.SKIPPED, message=message)
        ActivityService.log(
            work,
            WorkActivity.Action.BILLING_SKIPPED,
            message,
            period=period,
            user=actor,
            now=now,
        )
        return BillingOutcome(BillingOutcome.SKIPPED, message=message)

    @classmethod
    def maybe_bill_period(cls, period_id: int, now: Optional[datetime] = None, actor=None) -> BillingOutcome:
        """
        Raise the invoice for a completed period of an auto-billed work.

        Safe to call any number of times: only the caller that flips
        ``is_billed`` from false to true creates an invoice.
        """
        now = now or timezone.now()

        try:
            with transaction.atomic():
                try:
                    period = Period.objects.select_related(
                        'work__service', 'work__account', 'work__customer'
                    ).get(pk=period_id)
                except Period.DoesNotExist:
                    raise NotFoundError(f"Period {period_id} not found")
                work = period.work

                if period.is_billed:
                    return BillingOutcome(BillingOutcome.ALREADY_BILLED, invoice=period.invoice)
                if period.status != Period.Status.COMPLETED or not work.auto_bill:
                    return BillingOutcome(BillingOutcome.NOT_ELIGIBLE)

                subtotal = period.effective_billing_amount
                if subtotal is None:
                    return cls._skip(work, period, f"period {period.period_name}", actor, now)

                claimed = Period.objects.filter(pk=period.pk, is_billed=False).update(is_billed=True, updated_at=now)
                if not claimed:
                    return BillingOutcome(BillingOutcome.ALREADY_BILLED)

                invoice = cls._create_invoice(
                    work,
                    subtotal,
                    f"{work.service.name} - {period.period_name}",
                    now,
                    period=period,
                    notes=f"Auto-generated for recurring period: {period.period_name}",
                )
                Period.objects.filter(pk=period.pk).update(invoice=invoice)

                ActivityService.log(
                    work,
                    WorkActivity.Action.INVOICE_GENERATED,
                    f"Invoice {invoice.invoice_number} generated for {period.period_name}",
                    period=period,
                    user=actor,
                    metadata={
                        'invoice_id': invoice.id,
                        'invoice_number': invoice.invoice_number,
                        'total_amount': str(invoice.total_amount),
                    },
                    now=now,
                )
        except DatabaseError as e:
            logger.exception(f"Error billing period {period_id}")
            raise TransactionFailureError("Invoice creation", cause=e) from e

        logger.info(f"Invoice {invoice.invoice_number} created for period {period_id} (total {invoice.total_amount})")
        return BillingOutcome(BillingOutcome.BILLED, invoice=invoice)

    @classmethod
    def maybe_bill_work(cls, work_id: int, now: Optional[datetime] = None, actor=None) -> BillingOutcome:
        """Same as ``maybe_bill_period`` for a completed one-off work."""
        now = now or timezone.now()

        try:
            with transaction.atomic():
                try:
                    work = Work.objects.select_related('service', 'account', 'customer').get(pk=work_id)
                except Work.DoesNotExist:
                    raise NotFoundError(f"Work {work_id} not found")

                if work.is_billed:
                    return BillingOutcome(BillingOutcome.ALREADY_BILLED, invoice=work.invoice)
                if work.is_recurring or work.status != Work.Status.COMPLETED or not work.auto_bill:
                    return BillingOutcome(BillingOutcome.NOT_ELIGIBLE)

                if work.billing_amount is None:
                    return cls._skip(work, None, f"work {work.title}", actor, now)

                claimed = Work.objects.filter(pk=work.pk, is_billed=False).update(is_billed=True, updated_at=now)
                if not claimed:
                    return BillingOutcome(BillingOutcome.ALREADY_BILLED)

                invoice = cls._create_invoice(work, work.billing_amount, work.title, now)
                Work.objects.filter(pk=work.pk).update(invoice=invoice)

                ActivityService.log(
                    work,
                    WorkActivity.Action.INVOICE_GENERATED,
                    f"Invoice {invoice.invoice_number} generated",
                    user=actor,
                    metadata={
                        'invoice_id': invoice.id,
                        'invoice_number': invoice.invoice_number,
                        'total_amount': str(invoice.total_amount),
                    },
                    now=now,
                )
        except DatabaseError as e:
            logger.exception(f"Error billing work {work_id}")
            raise TransactionFailureError("Invoice creation", cause=e) from e

        logger.info(f"Invoice {invoice.invoice_number} created for work {work_id} (total {invoice.total_amount})")
        return BillingOutcome(BillingOutcome.BILLED, invoice=invoice)
