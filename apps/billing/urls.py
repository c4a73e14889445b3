from django.urls import path

from apps.billing import api

app_name = "billing"

urlpatterns = [
    path("enrolments/", api.EnrolmentBillingListView.as_view(), name="enrolment_list"),
    path("enrolments/status/", api.BatchBillingStatusView.as_view(), name="enrolment_status_batch"),
    path("enrolments/<int:pk>/status/", api.EnrolmentBillingStatusView.as_view(), name="enrolment_status"),
    path("payments/", api.PaymentCreateView.as_view(), name="payment_create"),
]
