from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


class RecurrencePattern(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"
    HALF_YEARLY = "half_yearly", "Half-yearly"
    YEARLY = "yearly", "Yearly"


class Priority(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"


class Account(models.Model):
    """The practice that owns customers and works, and numbers their invoices."""

    name = models.CharField(max_length=255)
    slug = models.SlugField(unique=True)

    invoice_prefix = models.CharField(max_length=20, default="INV")
    invoice_number_width = models.PositiveSmallIntegerField(default=6)
    next_invoice_number = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class Customer(models.Model):
    account = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="customers")
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class Service(models.Model):
    account = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="services")
    name = models.CharField(max_length=255)
    tax_rate = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        help_text="Percent; falls back to WORKS_DEFAULT_TAX_RATE when empty",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class Work(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_PROGRESS = "in_progress", "In Progress"
        COMPLETED = "completed", "Completed"

    account = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="works")
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="works")
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name="works")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="created_works")

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    is_recurring = models.BooleanField(default=False)
    recurrence_pattern = models.CharField(max_length=20, choices=RecurrencePattern.choices, blank=True)
    recurrence_day = models.PositiveSmallIntegerField(
        null=True, blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(31)],
        help_text="Anchor day of month for period due dates (1-31)",
    )
    start_date = models.DateField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True, help_text="Due date of a one-off work")

    billing_amount = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    auto_bill = models.BooleanField(default=False)
    is_billed = models.BooleanField(default=False)
    invoice = models.ForeignKey('Invoice', on_delete=models.SET_NULL, null=True, blank=True, related_name="+")

    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_recurring', 'status'], name='work_recurring_status_idx'),
            models.Index(fields=['customer', 'status'], name='work_customer_status_idx'),
        ]

    def __str__(self):
        return f"{self.title} - {self.customer.name}"


class TaskTemplate(models.Model):
    work = models.ForeignKey(Work, on_delete=models.CASCADE, related_name="task_templates")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    due_date_offset_days = models.IntegerField(default=0, help_text="Days relative to the period end date")
    estimated_hours = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    display_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['display_order', 'id']

    def __str__(self):
        return self.title


class Period(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_PROGRESS = "in_progress", "In Progress"
        COMPLETED = "completed", "Completed"

    work = models.ForeignKey(Work, on_delete=models.CASCADE, related_name="periods")
    period_name = models.CharField(max_length=100)
    period_start_date = models.DateField()
    period_end_date = models.DateField()
    due_date = models.DateField(db_index=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    billing_amount = models.DecimalField(
        max_digits=15, decimal_places=2, null=True, blank=True,
        help_text="Overrides the work's billing amount when set",
    )
    is_billed = models.BooleanField(default=False)
    invoice = models.ForeignKey('Invoice', on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-due_date']
        constraints = [
            models.UniqueConstraint(fields=['work', 'due_date'], name='uniq_period_work_due_date'),
        ]
        indexes = [
            models.Index(fields=['status', 'due_date'], name='period_status_due_idx'),
        ]

    def __str__(self):
        return f"{self.period_name} ({self.work.title})"

    def is_overdue(self, today: date) -> bool:
        return self.status != self.Status.COMPLETED and self.due_date < today

    @property
    def effective_billing_amount(self) -> Optional[Decimal]:
        if self.billing_amount is not None:
            return self.billing_amount
        return self.work.billing_amount


class BaseTask(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_PROGRESS = "in_progress", "In Progress"
        COMPLETED = "completed", "Completed"

    template = models.ForeignKey(TaskTemplate, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    due_date = models.DateField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    assigned_to = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    estimated_hours = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    actual_hours = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    remarks = models.TextField(blank=True)
    sort_order = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ['sort_order', 'id']

    def __str__(self):
        return self.title


class PeriodTask(BaseTask):
    period = models.ForeignKey(Period, on_delete=models.CASCADE, related_name="tasks")

    class Meta(BaseTask.Meta):
        indexes = [
            models.Index(fields=['period', 'status'], name='periodtask_period_status_idx'),
        ]


class WorkTask(BaseTask):
    """Task of a one-off (non-recurring) work."""

    work = models.ForeignKey(Work, on_delete=models.CASCADE, related_name="tasks")

    class Meta(BaseTask.Meta):
        indexes = [
            models.Index(fields=['work', 'status'], name='worktask_work_status_idx'),
        ]


class Invoice(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        VOID = "void", "Void"

    account = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="invoices")
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="invoices")
    work = models.ForeignKey(Work, on_delete=models.CASCADE, related_name="invoices")
    period = models.OneToOneField(Period, on_delete=models.SET_NULL, null=True, blank=True, related_name="billed_invoice")

    invoice_number = models.CharField(max_length=50, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    invoice_date = models.DateField()
    due_date = models.DateField()

    subtotal = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['account', 'invoice_number'], name='uniq_invoice_number_per_account'),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.customer.name}"


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="items")
    description = models.CharField(max_length=500)
    quantity = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal('1.0000'))
    unit_price = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))

    class Meta:
        ordering = ['id']


class WorkActivity(models.Model):
    class Action(models.TextChoices):
        PERIOD_CREATED = "period_created", "Period Created"
        PERIOD_COMPLETED = "period_completed", "Period Completed"
        TASK_CREATED = "task_created", "Task Created"
        TASK_COMPLETED = "task_completed", "Task Completed"
        TASK_UPDATED = "task_updated", "Task Updated"
        STATUS_CHANGED = "status_changed", "Status Changed"
        WORK_COMPLETED = "work_completed", "Work Completed"
        INVOICE_GENERATED = "invoice_generated", "Invoice Generated"
        BILLING_SKIPPED = "billing_skipped", "Billing Skipped"

    work = models.ForeignKey(Work, on_delete=models.CASCADE, related_name="activities")
    period = models.ForeignKey(Period, on_delete=models.SET_NULL, null=True, blank=True, related_name="activities")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)

    action = models.CharField(max_length=50, choices=Action.choices)
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    timestamp = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-timestamp', '-id']
        indexes = [
            models.Index(fields=['work', 'action'], name='activity_work_action_idx'),
        ]

    def __str__(self):
        return f"{self.action} on Work #{self.work_id} at {self.timestamp}"
