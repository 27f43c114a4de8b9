from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import serializers

from works.models import Invoice, InvoiceItem, Period, PeriodTask, Priority, Work, WorkActivity, WorkTask

User = get_user_model()


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        fields = ["id", "description", "quantity", "unit_price", "tax_rate", "amount"]
        read_only_fields = fields


class InvoiceListSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_name",
            "work",
            "period",
            "status",
            "invoice_date",
            "due_date",
            "total_amount",
        ]
        read_only_fields = fields


class InvoiceDetailSerializer(serializers.ModelSerializer):
    items = InvoiceItemSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "account",
            "customer",
            "work",
            "period",
            "status",
            "invoice_date",
            "due_date",
            "subtotal",
            "tax_rate",
            "tax_amount",
            "total_amount",
            "notes",
            "items",
            "created_at",
        ]
        read_only_fields = fields


class WorkSerializer(serializers.ModelSerializer):
    class Meta:
        model = Work
        fields = [
            "id",
            "title",
            "customer",
            "service",
            "status",
            "is_recurring",
            "recurrence_pattern",
            "recurrence_day",
            "start_date",
            "due_date",
            "billing_amount",
            "auto_bill",
            "is_billed",
            "invoice",
            "completed_at",
        ]
        read_only_fields = fields


class PeriodSerializer(serializers.ModelSerializer):
    is_overdue = serializers.SerializerMethodField()

    class Meta:
        model = Period
        fields = [
            "id",
            "work",
            "period_name",
            "period_start_date",
            "period_end_date",
            "due_date",
            "status",
            "completed_at",
            "billing_amount",
            "is_billed",
            "invoice",
            "notes",
            "is_overdue",
            "created_at",
        ]
        read_only_fields = fields

    def get_is_overdue(self, obj: Period) -> bool:
        today = self.context.get("today") or timezone.localdate()
        return obj.is_overdue(today)


class TaskSerializer(serializers.ModelSerializer):
    class Meta:
        model = PeriodTask
        fields = [
            "id",
            "period",
            "template",
            "title",
            "description",
            "priority",
            "due_date",
            "status",
            "assigned_to",
            "estimated_hours",
            "actual_hours",
            "completed_at",
            "completed_by",
            "remarks",
            "sort_order",
        ]
        read_only_fields = fields


class WorkTaskSerializer(TaskSerializer):
    class Meta(TaskSerializer.Meta):
        model = WorkTask
        fields = ["work" if f == "period" else f for f in TaskSerializer.Meta.fields]
        read_only_fields = fields


class ManualPeriodSerializer(serializers.Serializer):
    period_name = serializers.CharField(max_length=100)
    period_start_date = serializers.DateField()
    period_end_date = serializers.DateField()
    due_date = serializers.DateField()
    billing_amount = serializers.DecimalField(
        max_digits=15, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ManualTaskSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    due_date = serializers.DateField()
    priority = serializers.ChoiceField(choices=Priority.choices, default=Priority.MEDIUM)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.all(), required=False, allow_null=True)
    estimated_hours = serializers.DecimalField(
        max_digits=7, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True
    )


class TaskDetailsSerializer(serializers.Serializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.all(), required=False, allow_null=True)
    actual_hours = serializers.DecimalField(
        max_digits=7, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True
    )
    remarks = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StatusChangeSerializer(serializers.Serializer):
    # Free text: unknown values are rejected by the service layer with INVALID_STATUS.
    status = serializers.CharField(max_length=20)


class PeriodNotesSerializer(serializers.Serializer):
    notes = serializers.CharField(allow_blank=True)


class BillingOutcomeSerializer(serializers.Serializer):
    status = serializers.CharField()
    message = serializers.CharField(allow_blank=True)
    invoice = InvoiceDetailSerializer(allow_null=True)


class WorkActivitySerializer(serializers.ModelSerializer):
    action_display = serializers.CharField(source="get_action_display", read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True, allow_null=True)

    class Meta:
        model = WorkActivity
        fields = [
            "id",
            "period",
            "action",
            "action_display",
            "description",
            "metadata",
            "user_email",
            "timestamp",
        ]
        read_only_fields = fields
