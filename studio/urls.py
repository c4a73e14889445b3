from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/billing/", include("apps.billing.urls")),
    path("api/classes/", include("apps.classes.urls")),
    path("api/enrolments/", include("apps.enrolments.urls")),
    path("api/away/", include("apps.away.urls")),
    path("api/makeups/", include("apps.makeups.urls")),
]
