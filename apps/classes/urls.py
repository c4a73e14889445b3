from django.urls import path

from apps.classes import api

app_name = "classes"

urlpatterns = [
    path("cancellations/", api.CancellationCreateView.as_view(), name="cancellation_create"),
    path("cancellations/remove/", api.CancellationRemoveView.as_view(), name="cancellation_remove"),
]
