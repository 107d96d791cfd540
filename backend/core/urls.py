from django.urls import include, path

urlpatterns = [
    path("api/health/", include("health.urls")),
    # API v1
    path("api/v1/auth/", include("apps.auth.urls")),
    path("api/v1/users/", include("apps.users.urls")),
    path("api/v1/", include("apps.projects.urls")),
    path("api/v1/", include("apps.payments.urls")),
]
