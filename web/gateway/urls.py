from django.urls import include, path

urlpatterns = [
    path("api/", include("apps.checkout.urls")),
    path("", include("apps.monitoring.urls")),
]
