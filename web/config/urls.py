from django.urls import include, path

urlpatterns = [
    path("api/", include("apps.monitoring.urls")),
    path("api/checkout/", include("apps.checkout.urls")),
]
