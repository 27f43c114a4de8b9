import logging
from datetime import date
from decimal import Decimal

import pytest
from django.utils import timezone

from practiceflow.logging_filters import RequestIDFilter
from practiceflow.middleware import NO_REQUEST_ID
from works.models import Invoice, Period, PeriodTask, Work
from works.api.serializers import PeriodSerializer
from works.services import PeriodGenerator
from tests.factories import (
    PeriodFactory,
    PeriodTaskFactory,
    RecurringWorkFactory,
    TaskTemplateFactory,
    UserFactory,
    WorkFactory,
    WorkTaskFactory,
)


@pytest.fixture
def billed_work():
    return RecurringWorkFactory(auto_bill=True, billing_amount=Decimal("1000.00"))


@pytest.mark.django_db
class TestWorkEndpoints:
    def test_seed_then_ensure(self, api_client):
        work = RecurringWorkFactory(start_date=timezone.localdate())
        TaskTemplateFactory(work=work)

        response = api_client.post(f"/api/v1/works/{work.id}/periods/seed/")
        assert response.status_code == 201
        assert response.data["data"]["work"] == work.id

        response = api_client.post(f"/api/v1/works/{work.id}/periods/ensure/")
        assert response.status_code == 200
        assert response.data["data"] is None
        assert Period.objects.filter(work=work).count() == 1

    def test_ensure_creates_due_period(self, api_client):
        work = RecurringWorkFactory()
        PeriodFactory(work=work, due_date=date(2000, 1, 20))

        response = api_client.post(f"/api/v1/works/{work.id}/periods/ensure/")

        assert response.status_code == 201
        assert response.data["success"] is True
        assert response.data["data"]["due_date"] == "2000-02-20"

    def test_ensure_unknown_pattern_is_422(self, api_client):
        work = RecurringWorkFactory(recurrence_pattern="weekly")
        PeriodFactory(work=work)

        response = api_client.post(f"/api/v1/works/{work.id}/periods/ensure/")

        assert response.status_code == 422
        assert response.data["error"]["code"] == "UNKNOWN_PATTERN"

    def test_detail_view_generates_due_period(self, api_client):
        work = RecurringWorkFactory()
        PeriodFactory(work=work, due_date=date(2000, 1, 20))

        response = api_client.get(f"/api/v1/works/{work.id}/")
        assert response.status_code == 200
        assert response.data["data"]["id"] == work.id
        assert Period.objects.filter(work=work, due_date=date(2000, 2, 20)).exists()

        api_client.get(f"/api/v1/works/{work.id}/")
        assert Period.objects.filter(work=work).count() == 2

    def test_detail_view_survives_unknown_pattern(self, api_client):
        work = RecurringWorkFactory(recurrence_pattern="weekly")
        PeriodFactory(work=work, due_date=date(2000, 1, 20))

        response = api_client.get(f"/api/v1/works/{work.id}/")

        assert response.status_code == 200
        assert Period.objects.filter(work=work).count() == 1

    def test_missing_work_is_404(self, api_client):
        response = api_client.post("/api/v1/works/999999/periods/ensure/")
        assert response.status_code == 404
        assert response.data["success"] is False

    def test_list_periods(self, api_client):
        work = RecurringWorkFactory()
        PeriodFactory(work=work, due_date=date(2024, 9, 20))
        PeriodFactory(work=work, due_date=date(2024, 10, 20), period_name="October 2024")

        response = api_client.get(f"/api/v1/works/{work.id}/periods/")

        assert response.status_code == 200
        assert [p["due_date"] for p in response.data["data"]] == ["2024-10-20", "2024-09-20"]

    def test_create_manual_period_and_conflict(self, api_client):
        work = RecurringWorkFactory()
        payload = {
            "period_name": "Year-end review",
            "period_start_date": "2024-12-01",
            "period_end_date": "2024-12-31",
            "due_date": "2025-01-15",
            "billing_amount": "750.00",
        }

        first = api_client.post(f"/api/v1/works/{work.id}/periods/", payload, format="json")
        second = api_client.post(f"/api/v1/works/{work.id}/periods/", payload, format="json")

        assert first.status_code == 201
        assert first.data["data"]["billing_amount"] == "750.00"
        assert second.status_code == 409
        assert second.data["error"]["code"] == "DUPLICATE_PERIOD"

    def test_manual_period_payload_is_validated(self, api_client):
        work = RecurringWorkFactory()
        response = api_client.post(f"/api/v1/works/{work.id}/periods/", {"period_name": "x"}, format="json")
        assert response.status_code == 400
        assert response.data["success"] is False

    def test_work_status_completion_bills(self, api_client):
        work = WorkFactory(auto_bill=True, billing_amount=Decimal("200.00"))

        response = api_client.post(f"/api/v1/works/{work.id}/status/", {"status": "completed"}, format="json")

        assert response.status_code == 200
        assert response.data["data"]["changed"] is True
        assert response.data["data"]["billing"]["status"] == "billed"
        assert response.data["data"]["billing"]["invoice"]["total_amount"] == "236.00"

    def test_work_tasks_and_copy_templates(self, api_client):
        work = WorkFactory()
        TaskTemplateFactory(work=work, due_date_offset_days=-3)

        response = api_client.post(f"/api/v1/works/{work.id}/tasks/copy-templates/")
        assert response.data["data"] == {"created": 1}

        response = api_client.post(
            f"/api/v1/works/{work.id}/tasks/",
            {"title": "Sign-off", "due_date": "2024-10-05"},
            format="json",
        )
        assert response.status_code == 201

        response = api_client.get(f"/api/v1/works/{work.id}/tasks/")
        assert [t["title"] for t in response.data["data"]][-1] == "Sign-off"

    def test_activity_timeline(self, api_client):
        work = RecurringWorkFactory()
        PeriodGenerator.seed_initial_period(work.id)

        response = api_client.get(f"/api/v1/works/{work.id}/activities/")

        assert response.status_code == 200
        assert response.data["data"][0]["action"] == "period_created"


@pytest.mark.django_db
class TestPeriodEndpoints:
    def test_task_list_and_manual_task(self, api_client):
        period = PeriodFactory()
        PeriodTaskFactory(period=period, sort_order=0)

        response = api_client.post(
            f"/api/v1/periods/{period.id}/tasks/",
            {"title": "Extra filing", "due_date": "2024-09-29", "priority": "high"},
            format="json",
        )
        assert response.status_code == 201
        assert response.data["data"]["template"] is None

        response = api_client.get(f"/api/v1/periods/{period.id}/tasks/")
        assert [t["title"] for t in response.data["data"]][-1] == "Extra filing"

    def test_manual_task_keeps_assignee(self, api_client):
        period = PeriodFactory()
        user = UserFactory()

        response = api_client.post(
            f"/api/v1/periods/{period.id}/tasks/",
            {"title": "Chase documents", "due_date": "2024-09-30", "assigned_to": user.id},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["data"]["assigned_to"] == user.id

    def test_manual_task_on_billed_period_is_422(self, api_client):
        period = PeriodFactory(is_billed=True, status=Period.Status.COMPLETED)
        response = api_client.post(
            f"/api/v1/periods/{period.id}/tasks/",
            {"title": "Too late", "due_date": "2024-09-29"},
            format="json",
        )
        assert response.status_code == 422
        assert response.data["error"]["code"] == "PERIOD_LOCKED"

    def test_complete_period_bills(self, api_client, billed_work):
        period = PeriodFactory(work=billed_work)

        response = api_client.post(f"/api/v1/periods/{period.id}/status/", {"status": "completed"}, format="json")

        assert response.status_code == 200
        billing = response.data["data"]["billing"]
        assert billing["status"] == "billed"
        assert billing["invoice"]["total_amount"] == "1180.00"

    def test_unknown_status_is_400(self, api_client):
        period = PeriodFactory()
        response = api_client.post(f"/api/v1/periods/{period.id}/status/", {"status": "done"}, format="json")
        assert response.status_code == 400
        assert response.data["error"]["code"] == "INVALID_STATUS"

    def test_invalid_transition_is_422(self, api_client):
        period = PeriodFactory(status=Period.Status.COMPLETED)
        response = api_client.post(f"/api/v1/periods/{period.id}/status/", {"status": "pending"}, format="json")
        assert response.status_code == 422
        assert response.data["error"]["code"] == "INVALID_STATE_TRANSITION"

    def test_overdue_is_judged_against_given_day(self):
        period = PeriodFactory(due_date=date(2024, 9, 20))

        assert PeriodSerializer(period, context={"today": date(2024, 9, 21)}).data["is_overdue"] is True
        assert PeriodSerializer(period, context={"today": date(2024, 9, 20)}).data["is_overdue"] is False
        period.status = Period.Status.COMPLETED
        assert PeriodSerializer(period, context={"today": date(2024, 9, 21)}).data["is_overdue"] is False

    def test_notes(self, api_client):
        period = PeriodFactory(is_billed=True, status=Period.Status.COMPLETED)
        response = api_client.patch(f"/api/v1/periods/{period.id}/notes/", {"notes": "Paid by cheque"}, format="json")
        assert response.status_code == 200
        assert response.data["data"]["notes"] == "Paid by cheque"

    def test_bill_retry_is_idempotent(self, api_client, billed_work):
        period = PeriodFactory(work=billed_work, status=Period.Status.COMPLETED)

        first = api_client.post(f"/api/v1/periods/{period.id}/bill/")
        second = api_client.post(f"/api/v1/periods/{period.id}/bill/")

        assert first.data["data"]["status"] == "billed"
        assert second.data["data"]["status"] == "already_billed"
        assert Invoice.objects.count() == 1


@pytest.mark.django_db
class TestTaskEndpoints:
    def test_completing_last_task_completes_period(self, api_client, billed_work):
        period = PeriodFactory(work=billed_work)
        task = PeriodTaskFactory(period=period)

        response = api_client.post(f"/api/v1/period-tasks/{task.id}/status/", {"status": "completed"}, format="json")

        data = response.data["data"]
        assert response.status_code == 200
        assert data["task"]["status"] == PeriodTask.Status.COMPLETED
        assert data["parent_completed"] is True
        assert data["period"]["status"] == "completed"
        assert data["billing"]["status"] == "billed"

    def test_work_task_status(self, api_client):
        task = WorkTaskFactory()
        response = api_client.post(f"/api/v1/work-tasks/{task.id}/status/", {"status": "in_progress"}, format="json")
        assert response.status_code == 200
        assert response.data["data"]["task"]["status"] == "in_progress"
        assert response.data["data"]["parent_completed"] is False

    def test_patch_period_task_details(self, api_client):
        task = PeriodTaskFactory()
        user = UserFactory()

        response = api_client.patch(
            f"/api/v1/period-tasks/{task.id}/",
            {"assigned_to": user.id, "actual_hours": "1.75", "remarks": "Filed online"},
            format="json",
        )

        data = response.data["data"]
        assert response.status_code == 200
        assert data["assigned_to"] == user.id
        assert data["actual_hours"] == "1.75"
        assert data["remarks"] == "Filed online"

    def test_patch_task_of_billed_period_is_422(self, api_client):
        task = PeriodTaskFactory(period=PeriodFactory(is_billed=True, status=Period.Status.COMPLETED))
        response = api_client.patch(f"/api/v1/period-tasks/{task.id}/", {"remarks": "Too late"}, format="json")
        assert response.status_code == 422
        assert response.data["error"]["code"] == "PERIOD_LOCKED"

    def test_patch_work_task_details(self, api_client):
        task = WorkTaskFactory()
        response = api_client.patch(f"/api/v1/work-tasks/{task.id}/", {"actual_hours": "3.00"}, format="json")
        assert response.status_code == 200
        assert response.data["data"]["actual_hours"] == "3.00"

    def test_status_of_billed_work_task_is_422(self, api_client):
        task = WorkTaskFactory(work=WorkFactory(is_billed=True, status=Work.Status.COMPLETED))
        response = api_client.post(f"/api/v1/work-tasks/{task.id}/status/", {"status": "completed"}, format="json")
        assert response.status_code == 422
        assert response.data["error"]["code"] == "WORK_LOCKED"


@pytest.mark.django_db
class TestInvoiceEndpoints:
    def test_list_and_retrieve(self, api_client, billed_work):
        period = PeriodFactory(work=billed_work)
        api_client.post(f"/api/v1/periods/{period.id}/status/", {"status": "completed"}, format="json")
        invoice = Invoice.objects.get()

        response = api_client.get("/api/v1/invoices/", {"work": billed_work.id})
        assert response.status_code == 200
        assert response.data["meta"]["pagination"]["total"] == 1
        assert response.data["data"][0]["invoice_number"] == "INV-000001"

        response = api_client.get(f"/api/v1/invoices/{invoice.id}/")
        assert response.status_code == 200
        assert len(response.data["data"]["items"]) == 1

    def test_invoices_are_read_only(self, api_client):
        response = api_client.post("/api/v1/invoices/", {}, format="json")
        assert response.status_code == 405


@pytest.mark.django_db
class TestRequestID:
    def test_request_id_is_echoed(self, api_client):
        work = RecurringWorkFactory()
        response = api_client.get(f"/api/v1/works/{work.id}/periods/", HTTP_X_REQUEST_ID="req-123")
        assert response["X-Request-ID"] == "req-123"

    def test_error_envelope_carries_request_id(self, api_client):
        response = api_client.get("/api/v1/works/999999/periods/", HTTP_X_REQUEST_ID="req-404")
        assert response.status_code == 404
        assert response.data["request_id"] == "req-404"

    def test_malformed_request_id_is_replaced(self, api_client):
        work = RecurringWorkFactory()
        response = api_client.get(f"/api/v1/works/{work.id}/periods/", HTTP_X_REQUEST_ID="bad id\nwith newline")
        assert response["X-Request-ID"] != "bad id\nwith newline"
        assert len(response["X-Request-ID"]) == 32

    def test_log_records_outside_requests_are_marked(self):
        record = logging.LogRecord("works", logging.INFO, __file__, 1, "reconciled", None, None)
        assert RequestIDFilter().filter(record) is True
        assert record.request_id == NO_REQUEST_ID
