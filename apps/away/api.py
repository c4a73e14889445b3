from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.views import APIView

from apps.away.models import AwayScope
from apps.away.services import create_away_period, delete_away_period, update_away_period
from apps.common.api import action_response, error_response


class AwayPeriodRequestSerializer(serializers.Serializer):
    family_id = serializers.IntegerField(min_value=1)
    scope = serializers.ChoiceField(choices=AwayScope.choices)
    student_id = serializers.IntegerField(required=False, allow_null=True)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=500)


def _payload(result):
    return {
        "id": result.data["id"],
        "family_id": result.data["family_id"],
        "impacts": [
            {
                "enrolment_id": impact.enrolment_id,
                "missed_occurrences": impact.missed_occurrences,
                "paid_through_delta_days": impact.paid_through_delta_days,
                "credits_delta": impact.credits_delta,
            }
            for impact in result.data.get("impacts", [])
        ],
    }


class AwayPeriodCreateView(APIView):
    @extend_schema(request=AwayPeriodRequestSerializer)
    def post(self, request):
        serializer = AwayPeriodRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = create_away_period(actor=request.user, **serializer.validated_data)
        if not result.ok:
            return error_response(result)
        return action_response(result, _payload(result), success_status=status.HTTP_201_CREATED)


class AwayPeriodDetailView(APIView):
    @extend_schema(request=AwayPeriodRequestSerializer)
    def put(self, request, pk):
        serializer = AwayPeriodRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = update_away_period(pk, actor=request.user, **serializer.validated_data)
        if not result.ok:
            return error_response(result)
        return action_response(result, _payload(result))

    def delete(self, request, pk):
        result = delete_away_period(pk, actor=request.user)
        return action_response(result)
