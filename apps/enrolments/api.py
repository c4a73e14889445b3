from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.views import APIView

from apps.common.api import action_response
from apps.enrolments.services import move_student_to_class


class MoveRequestSerializer(serializers.Serializer):
    student_id = serializers.IntegerField(min_value=1)
    from_template_id = serializers.IntegerField(min_value=1)
    to_template_id = serializers.IntegerField(min_value=1)
    plan_id = serializers.IntegerField(min_value=1)
    effective_date = serializers.DateField()
    allow_overload = serializers.BooleanField(default=False)


class MoveStudentView(APIView):
    @extend_schema(request=MoveRequestSerializer)
    def post(self, request):
        serializer = MoveRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = move_student_to_class(
            data["student_id"],
            data["from_template_id"],
            data["to_template_id"],
            data["plan_id"],
            data["effective_date"],
            allow_overload=data["allow_overload"],
            actor=request.user,
        )
        return action_response(result, success_status=status.HTTP_201_CREATED)
