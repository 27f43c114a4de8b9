from django.contrib import admin
from .models import (
    Account, Customer, Service, Work, TaskTemplate, Period, PeriodTask,
    WorkTask, Invoice, InvoiceItem, WorkActivity
)


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'invoice_prefix', 'next_invoice_number')
    search_fields = ('name', 'slug')


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'account', 'created_at')
    search_fields = ('name', 'email')
    list_filter = ('account',)


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('name', 'account', 'tax_rate')


class TaskTemplateInline(admin.TabularInline):
    model = TaskTemplate
    extra = 0


@admin.register(Work)
class WorkAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'customer', 'status', 'is_recurring', 'recurrence_pattern', 'auto_bill', 'is_billed')
    list_filter = ('status', 'is_recurring', 'recurrence_pattern', 'account')
    search_fields = ('title', 'customer__name')
    inlines = [TaskTemplateInline]


class PeriodTaskInline(admin.TabularInline):
    model = PeriodTask
    extra = 0
    fields = ('title', 'priority', 'due_date', 'status', 'assigned_to', 'sort_order')


@admin.register(Period)
class PeriodAdmin(admin.ModelAdmin):
    list_display = ('id', 'work', 'period_name', 'due_date', 'status', 'is_billed', 'invoice')
    list_filter = ('status', 'is_billed')
    search_fields = ('period_name', 'work__title')
    readonly_fields = ('is_billed', 'invoice', 'completed_at', 'created_at', 'updated_at')
    inlines = [PeriodTaskInline]


@admin.register(WorkTask)
class WorkTaskAdmin(admin.ModelAdmin):
    list_display = ('id', 'work', 'title', 'status', 'due_date')
    list_filter = ('status', 'priority')


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0
    readonly_fields = ('description', 'quantity', 'unit_price', 'tax_rate', 'amount')


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'customer', 'status', 'total_amount', 'invoice_date')
    list_filter = ('status', 'account')
    search_fields = ('invoice_number', 'customer__name')
    inlines = [InvoiceItemInline]


@admin.register(WorkActivity)
class WorkActivityAdmin(admin.ModelAdmin):
    list_display = ('id', 'work', 'period', 'action', 'user', 'timestamp')
    list_filter = ('action',)
    readonly_fields = ('timestamp',)


admin.site.register(PeriodTask)
admin.site.register(TaskTemplate)
