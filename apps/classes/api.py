from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.views import APIView

from apps.classes.services import cancel_class_occurrence, uncancel_class_occurrence
from apps.common.api import action_response, error_response


class CancellationRequestSerializer(serializers.Serializer):
    template_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class CancellationCreateView(APIView):
    @extend_schema(request=CancellationRequestSerializer)
    def post(self, request):
        serializer = CancellationRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = cancel_class_occurrence(
            data["template_id"], data["date"], reason=data["reason"], actor=request.user
        )
        if not result.ok:
            return error_response(result)
        cancellation = result.data["cancellation"]
        payload = {
            "id": cancellation.pk,
            "template_id": cancellation.template_id,
            "date": cancellation.date,
            "credited_enrolment_ids": [a.enrolment_id for a in result.data["adjustments"]],
        }
        return action_response(result, payload, success_status=status.HTTP_201_CREATED)


class CancellationRemoveView(APIView):
    @extend_schema(request=CancellationRequestSerializer)
    def post(self, request):
        serializer = CancellationRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = uncancel_class_occurrence(data["template_id"], data["date"], actor=request.user)
        return action_response(result)
