from dataclasses import asdict

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.classes.models import ClassTemplate
from apps.common.api import action_response, error_response
from apps.makeups.availability import compute_makeup_availability
from apps.makeups.services import book_makeup, cancel_makeup_booking


class AvailabilityQuerySerializer(serializers.Serializer):
    template_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()


class BookingRequestSerializer(serializers.Serializer):
    student_id = serializers.IntegerField(min_value=1)
    template_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    missed_date = serializers.DateField(required=False, allow_null=True)


class MakeupAvailabilityView(APIView):
    @extend_schema(parameters=[AvailabilityQuerySerializer])
    def get(self, request):
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        template = get_object_or_404(ClassTemplate, pk=query.validated_data["template_id"])
        return Response(asdict(compute_makeup_availability(template, query.validated_data["date"])))


class MakeupBookingCreateView(APIView):
    @extend_schema(request=BookingRequestSerializer)
    def post(self, request):
        serializer = BookingRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = book_makeup(
            data["student_id"],
            data["template_id"],
            data["date"],
            missed_date=data.get("missed_date"),
            actor=request.user,
        )
        if not result.ok:
            return error_response(result)
        booking = result.data["booking"]
        payload = {"id": booking.pk, "status": booking.status, "available": result.data["available"]}
        return action_response(result, payload, success_status=status.HTTP_201_CREATED)


class MakeupBookingCancelView(APIView):
    def post(self, request, pk):
        result = cancel_makeup_booking(pk)
        if not result.ok:
            return error_response(result)
        booking = result.data["booking"]
        return action_response(result, {"id": booking.pk, "status": booking.status})
