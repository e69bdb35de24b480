from django.contrib import admin
from django.urls import path, include, re_path
from django.conf import settings
from django.http import HttpResponse

from rest_framework import permissions
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView, TokenVerifyView

# OpenAPI / Swagger
from drf_yasg.views import get_schema_view
from drf_yasg import openapi


# Health endpoint for container healthchecks
def healthz(_request):
    return HttpResponse("ok", status=200)


schema_view = get_schema_view(
    openapi.Info(
        title="PediScribe API",
        default_version='v1',
        description="Consultation audio intake and processing API.",
        license=openapi.License(name="Proprietary"),
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
)

urlpatterns = [
    path('admin/', admin.site.urls),

    # Auth (JWT)
    path('api/auth/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/token/verify/', TokenVerifyView.as_view(), name='token_verify'),

    path('api/', include('consultations.urls')),
    path('api/uploads/', include('uploads.urls')),

    path('healthz/', healthz, name='healthz'),
]

if getattr(settings, 'SWAGGER_ENABLED', False):
    urlpatterns += [
        re_path(
            r'^swagger(?P<format>\.json|\.yaml)$',
            schema_view.without_ui(cache_timeout=0),
            name='schema-json',
        ),
        path('swagger/', schema_view.with_ui('swagger', cache_timeout=0), name='schema-swagger-ui'),
        path('redoc/', schema_view.with_ui('redoc', cache_timeout=0), name='schema-redoc'),
    ]
