from django.urls import path

from apps.makeups import api

app_name = "makeups"

urlpatterns = [
    path("availability/", api.MakeupAvailabilityView.as_view(), name="availability"),
    path("bookings/", api.MakeupBookingCreateView.as_view(), name="booking_create"),
    path("bookings/<int:pk>/cancel/", api.MakeupBookingCancelView.as_view(), name="booking_cancel"),
]
