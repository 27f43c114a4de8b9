import logging
from typing import Any, Dict, Optional, Tuple, cast

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response

from works.models import Invoice, Period, PeriodTask, Work, WorkTask
from works.services import (
    ActivityService,
    BillingService,
    PeriodGenerator,
    PeriodService,
    StatusService,
    TransitionResult,
    WorkTaskService,
)
from works.validation.errors import APIError, FieldError, ValidationError

from .response import APIResponse
from .serializers import (
    BillingOutcomeSerializer,
    InvoiceDetailSerializer,
    InvoiceListSerializer,
    ManualPeriodSerializer,
    ManualTaskSerializer,
    PeriodNotesSerializer,
    PeriodSerializer,
    StatusChangeSerializer,
    TaskDetailsSerializer,
    TaskSerializer,
    WorkActivitySerializer,
    WorkSerializer,
    WorkTaskSerializer,
)

logger = logging.getLogger(__name__)


def _id_param(description: str) -> OpenApiParameter:
    return OpenApiParameter(
        name="pk",
        description=description,
        required=True,
        type=OpenApiTypes.INT,
        location=OpenApiParameter.PATH,
    )


WORK_ID_PARAM = _id_param("Work ID")
PERIOD_ID_PARAM = _id_param("Period ID")
TASK_ID_PARAM = _id_param("Task ID")
INVOICE_ID_PARAM = _id_param("Invoice ID")


def _actor(request: Request):
    user = getattr(request, "user", None)
    return user if user is not None and user.is_authenticated else None


def _validated(serializer_class, request: Request) -> Dict[str, Any]:
    serializer = serializer_class(data=request.data)
    serializer.is_valid(raise_exception=True)
    return cast(Dict[str, Any], serializer.validated_data)


def _transition_data(result: TransitionResult) -> Dict[str, Any]:
    task = result.task
    return {
        "changed": result.changed,
        "parent_completed": result.parent_completed,
        "task": (WorkTaskSerializer if isinstance(task, WorkTask) else TaskSerializer)(task).data if task else None,
        "period": PeriodSerializer(result.period).data if result.period else None,
        "work": WorkSerializer(result.work).data if result.work else None,
        "billing": BillingOutcomeSerializer(result.billing).data if result.billing else None,
    }


def _page_params(request: Request) -> Tuple[int, int]:
    try:
        page = max(int(request.query_params.get("page", 1)), 1)
        page_size = min(max(int(request.query_params.get("page_size", 25)), 1), 100)
    except (TypeError, ValueError):
        raise ValidationError(
            message="page and page_size must be integers",
            fields=[FieldError(field="page", code="FIELD_INVALID", message="Must be an integer")],
        )
    return page, page_size


# ------------------------------
# Work ViewSet
# ------------------------------
@extend_schema_view(
    retrieve=extend_schema(summary="Get work details", parameters=[WORK_ID_PARAM]),
)
class WorkViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Work.objects.select_related("customer", "service")
    lookup_value_regex = r"\d+"
    serializer_class = WorkSerializer

    def retrieve(self, request: Request, *args, **kwargs) -> Response:
        work = self.get_object()
        if work.is_recurring:
            # Opportunistic; the detail view still renders if generation fails.
            try:
                PeriodGenerator.ensure_next_period(work.id, actor=_actor(request))
            except APIError as e:
                logger.warning(f"Period generation skipped for work {work.id}: {e.message}")
        return APIResponse.success(data=WorkSerializer(work).data, message="Work retrieved.")

    @extend_schema(
        summary="Ensure next period",
        description="Create the next period of a recurring work if one is due. Idempotent; returns null data when nothing was created.",
        request=None,
        responses={200: PeriodSerializer, 201: PeriodSerializer},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="periods/ensure")
    def ensure_period(self, request: Request, pk: Optional[int] = None) -> Response:
        period = PeriodGenerator.ensure_next_period(int(pk), actor=_actor(request))
        if period is None:
            return APIResponse.success(data=None, message="No new period due.")
        return APIResponse.success(data=PeriodSerializer(period).data, message="Period created.", status_code=201)

    @extend_schema(
        summary="Seed initial period",
        description="Create the first period of a recurring work that has none, from its start date.",
        request=None,
        responses={200: PeriodSerializer, 201: PeriodSerializer},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="periods/seed")
    def seed_period(self, request: Request, pk: Optional[int] = None) -> Response:
        period = PeriodGenerator.seed_initial_period(int(pk), actor=_actor(request))
        if period is None:
            return APIResponse.success(data=None, message="Work already has periods.")
        return APIResponse.success(data=PeriodSerializer(period).data, message="Period created.", status_code=201)

    @extend_schema(
        methods=["GET"],
        summary="List periods",
        description="Periods of a work, most recent due date first.",
        responses={200: PeriodSerializer(many=True)},
        parameters=[WORK_ID_PARAM],
    )
    @extend_schema(
        methods=["POST"],
        summary="Create manual period",
        description="Add a period by hand. Fails with 409 when the work already has a period on that due date.",
        request=ManualPeriodSerializer,
        responses={201: PeriodSerializer},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["get", "post"], url_path="periods")
    def periods(self, request: Request, pk: Optional[int] = None) -> Response:
        if request.method == "GET":
            periods = PeriodService.list_periods(int(pk))
            return APIResponse.success(data=PeriodSerializer(periods, many=True).data, message="Periods retrieved.")

        data = _validated(ManualPeriodSerializer, request)
        period = PeriodService.create_manual_period(int(pk), actor=_actor(request), **data)
        return APIResponse.success(data=PeriodSerializer(period).data, message="Period created.", status_code=201)

    @extend_schema(
        methods=["GET"],
        summary="List work tasks",
        responses={200: WorkTaskSerializer(many=True)},
        parameters=[WORK_ID_PARAM],
    )
    @extend_schema(
        methods=["POST"],
        summary="Create work task",
        description="Add a task to a one-off work.",
        request=ManualTaskSerializer,
        responses={201: WorkTaskSerializer},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["get", "post"], url_path="tasks")
    def tasks(self, request: Request, pk: Optional[int] = None) -> Response:
        if request.method == "GET":
            tasks = WorkTaskService.list_work_tasks(int(pk))
            return APIResponse.success(data=WorkTaskSerializer(tasks, many=True).data, message="Tasks retrieved.")

        data = _validated(ManualTaskSerializer, request)
        task = WorkTaskService.create_manual_work_task(int(pk), actor=_actor(request), **data)
        return APIResponse.success(data=WorkTaskSerializer(task).data, message="Task created.", status_code=201)

    @extend_schema(
        summary="Copy templates to work",
        description="Copy the task templates of a one-off work into its task list. Runs once.",
        request=None,
        responses={200: {"type": "object", "properties": {"created": {"type": "integer"}}}},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="tasks/copy-templates")
    def copy_templates(self, request: Request, pk: Optional[int] = None) -> Response:
        created = WorkTaskService.copy_templates_to_work(int(pk), actor=_actor(request))
        return APIResponse.success(data={"created": created}, message="Templates copied.")

    @extend_schema(
        summary="Update work status",
        description="Manual status change. Completing a one-off work triggers auto-billing.",
        request=StatusChangeSerializer,
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(StatusChangeSerializer, request)
        result = StatusService.set_work_status(int(pk), data["status"], actor=_actor(request))
        return APIResponse.success(data=_transition_data(result), message="Work status updated.")

    @extend_schema(
        summary="Work activity timeline",
        responses={200: WorkActivitySerializer(many=True)},
        parameters=[WORK_ID_PARAM],
    )
    @action(detail=True, methods=["get"], url_path="activities")
    def activities(self, request: Request, pk: Optional[int] = None) -> Response:
        work = self.get_object()
        entries = ActivityService.list_for_work(work.id)
        return APIResponse.success(data=WorkActivitySerializer(entries, many=True).data, message="Activity retrieved.")


# ------------------------------
# Period ViewSet
# ------------------------------
@extend_schema_view(
    retrieve=extend_schema(summary="Get period details", parameters=[PERIOD_ID_PARAM]),
)
class PeriodViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Period.objects.select_related("work")
    lookup_value_regex = r"\d+"
    serializer_class = PeriodSerializer

    def retrieve(self, request: Request, *args, **kwargs) -> Response:
        period = self.get_object()
        return APIResponse.success(data=PeriodSerializer(period).data, message="Period retrieved.")

    @extend_schema(
        methods=["GET"],
        summary="List period tasks",
        responses={200: TaskSerializer(many=True)},
        parameters=[PERIOD_ID_PARAM],
    )
    @extend_schema(
        methods=["POST"],
        summary="Create manual task",
        description="Add a task that is not derived from a template. Billed periods are locked.",
        request=ManualTaskSerializer,
        responses={201: TaskSerializer},
        parameters=[PERIOD_ID_PARAM],
    )
    @action(detail=True, methods=["get", "post"], url_path="tasks")
    def tasks(self, request: Request, pk: Optional[int] = None) -> Response:
        if request.method == "GET":
            tasks = PeriodService.list_period_tasks(int(pk))
            return APIResponse.success(data=TaskSerializer(tasks, many=True).data, message="Tasks retrieved.")

        data = _validated(ManualTaskSerializer, request)
        task = PeriodService.create_manual_task(int(pk), actor=_actor(request), **data)
        return APIResponse.success(data=TaskSerializer(task).data, message="Task created.", status_code=201)

    @extend_schema(
        summary="Update period status",
        description="Manual status change. Completing a period triggers auto-billing even with open tasks.",
        request=StatusChangeSerializer,
        parameters=[PERIOD_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(StatusChangeSerializer, request)
        result = StatusService.set_period_status(int(pk), data["status"], actor=_actor(request))
        return APIResponse.success(data=_transition_data(result), message="Period status updated.")

    @extend_schema(
        summary="Update period notes",
        request=PeriodNotesSerializer,
        responses={200: PeriodSerializer},
        parameters=[PERIOD_ID_PARAM],
    )
    @action(detail=True, methods=["patch"], url_path="notes")
    def notes(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(PeriodNotesSerializer, request)
        period = PeriodService.update_period_notes(int(pk), data["notes"])
        return APIResponse.success(data=PeriodSerializer(period).data, message="Notes updated.")

    @extend_schema(
        summary="Bill period",
        description="Run the billing trigger for a completed period. Safe to retry; never creates a second invoice.",
        request=None,
        responses={200: BillingOutcomeSerializer},
        parameters=[PERIOD_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="bill")
    def bill(self, request: Request, pk: Optional[int] = None) -> Response:
        outcome = BillingService.maybe_bill_period(int(pk), actor=_actor(request))
        return APIResponse.success(data=BillingOutcomeSerializer(outcome).data, message=outcome.message or "Billing processed.")


# ------------------------------
# Task ViewSets
# ------------------------------
@extend_schema_view(
    retrieve=extend_schema(summary="Get period task", parameters=[TASK_ID_PARAM]),
    partial_update=extend_schema(
        summary="Update period task details",
        description="Set assignee, actual hours or remarks. Tasks of a billed period are locked.",
        request=TaskDetailsSerializer,
        responses={200: TaskSerializer},
        parameters=[TASK_ID_PARAM],
    ),
)
class PeriodTaskViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = PeriodTask.objects.all()
    lookup_value_regex = r"\d+"
    serializer_class = TaskSerializer

    def partial_update(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(TaskDetailsSerializer, request)
        task = PeriodService.update_task_details(int(pk), actor=_actor(request), **data)
        return APIResponse.success(data=TaskSerializer(task).data, message="Task updated.")

    @extend_schema(
        summary="Update task status",
        description="Completing the last open task completes the period and triggers auto-billing.",
        request=StatusChangeSerializer,
        parameters=[TASK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(StatusChangeSerializer, request)
        result = StatusService.set_task_status(int(pk), data["status"], actor=_actor(request))
        return APIResponse.success(data=_transition_data(result), message="Task status updated.")


@extend_schema_view(
    retrieve=extend_schema(summary="Get work task", parameters=[TASK_ID_PARAM]),
    partial_update=extend_schema(
        summary="Update work task details",
        description="Set assignee, actual hours or remarks. Tasks of a billed work are locked.",
        request=TaskDetailsSerializer,
        responses={200: WorkTaskSerializer},
        parameters=[TASK_ID_PARAM],
    ),
)
class WorkTaskViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = WorkTask.objects.all()
    lookup_value_regex = r"\d+"
    serializer_class = WorkTaskSerializer

    def partial_update(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(TaskDetailsSerializer, request)
        task = WorkTaskService.update_work_task_details(int(pk), actor=_actor(request), **data)
        return APIResponse.success(data=WorkTaskSerializer(task).data, message="Task updated.")

    @extend_schema(
        summary="Update work task status",
        description="Completing the last open task of a one-off work completes the work and triggers auto-billing.",
        request=StatusChangeSerializer,
        parameters=[TASK_ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk: Optional[int] = None) -> Response:
        data = _validated(StatusChangeSerializer, request)
        result = StatusService.set_work_task_status(int(pk), data["status"], actor=_actor(request))
        return APIResponse.success(data=_transition_data(result), message="Task status updated.")


# ------------------------------
# Invoice ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List invoices",
        parameters=[
            OpenApiParameter(name="work", description="Filter by work ID", required=False, type=int),
            OpenApiParameter(name="page", required=False, type=int),
            OpenApiParameter(name="page_size", required=False, type=int),
        ],
    ),
    retrieve=extend_schema(summary="Get invoice details", parameters=[INVOICE_ID_PARAM]),
)
class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Invoice.objects.select_related("customer").prefetch_related("items")
    lookup_value_regex = r"\d+"

    def get_serializer_class(self):
        if self.action == "list":
            return InvoiceListSerializer
        return InvoiceDetailSerializer

    def list(self, request: Request, *args, **kwargs) -> Response:
        queryset = self.get_queryset()
        work_id = request.query_params.get("work")
        if work_id:
            if not work_id.isdigit():
                raise ValidationError(
                    message="work must be an integer",
                    fields=[FieldError(field="work", code="FIELD_INVALID", message="Must be an integer")],
                )
            queryset = queryset.filter(work_id=int(work_id))

        page, page_size = _page_params(request)
        total = queryset.count()
        offset = (page - 1) * page_size
        invoices = queryset[offset:offset + page_size]
        return APIResponse.paginated(
            data=InvoiceListSerializer(invoices, many=True).data,
            page=page,
            page_size=page_size,
            total=total,
            message="Invoices retrieved.",
        )

    def retrieve(self, request: Request, *args, **kwargs) -> Response:
        invoice = self.get_object()
        return APIResponse.success(data=InvoiceDetailSerializer(invoice).data, message="Invoice retrieved.")
