from django.urls import path

from apps.away import api

app_name = "away"

urlpatterns = [
    path("", api.AwayPeriodCreateView.as_view(), name="away_create"),
    path("<int:pk>/", api.AwayPeriodDetailView.as_view(), name="away_detail"),
]
