from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.billing.invoicing import record_payment
from apps.billing.serializers import (
    AsOfQuerySerializer,
    BatchStatusRequestSerializer,
    BillingSnapshotSerializer,
    EnrolmentBillingSerializer,
    InvoiceSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
)
from apps.billing.services import (
    enrolment_queryset,
    get_billing_status_for_enrolments,
    get_enrolment_billing_status,
)
from apps.common.api import action_response, error_response
from apps.common.exceptions import NotFound
from apps.common.results import ActionResult
from apps.enrolments.filters import EnrolmentFilter


class EnrolmentBillingStatusView(APIView):
    @extend_schema(parameters=[AsOfQuerySerializer], responses=BillingSnapshotSerializer)
    def get(self, request, pk):
        query = AsOfQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        try:
            snapshot = get_enrolment_billing_status(pk, query.validated_data.get("as_of"))
        except NotFound as exc:
            return error_response(ActionResult.from_error(exc))
        return Response(BillingSnapshotSerializer(snapshot.to_dict()).data)


class BatchBillingStatusView(APIView):
    @extend_schema(request=BatchStatusRequestSerializer, responses=BillingSnapshotSerializer(many=True))
    def post(self, request):
        serializer = BatchStatusRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        snapshots = get_billing_status_for_enrolments(
            serializer.validated_data["enrolment_ids"], serializer.validated_data.get("as_of")
        )
        return Response(
            BillingSnapshotSerializer([s.to_dict() for s in snapshots.values()], many=True).data
        )


class EnrolmentBillingListView(generics.ListAPIView):
    """Cached snapshots; call the status endpoints for a fresh projection."""

    serializer_class = EnrolmentBillingSerializer
    filterset_class = EnrolmentFilter
    queryset = enrolment_queryset().order_by("-start_date", "-id")


class PaymentCreateView(APIView):
    @extend_schema(request=PaymentCreateSerializer, responses=PaymentSerializer)
    def post(self, request):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = record_payment(
            data["invoice_id"],
            data["amount_cents"],
            method=data["method"],
            paid_at=data.get("paid_at"),
            note=data["note"],
        )
        if not result.ok:
            return error_response(result)
        snapshot = result.data["snapshot"]
        payload = {
            "payment": PaymentSerializer(result.data["payment"]).data,
            "invoice": InvoiceSerializer(result.data["invoice"]).data,
            "snapshot": BillingSnapshotSerializer(snapshot.to_dict()).data if snapshot else None,
        }
        return action_response(result, payload, success_status=status.HTTP_201_CREATED)
