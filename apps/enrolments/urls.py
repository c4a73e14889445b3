from django.urls import path

from apps.enrolments import api

app_name = "enrolments"

urlpatterns = [
    path("move/", api.MoveStudentView.as_view(), name="move"),
]
