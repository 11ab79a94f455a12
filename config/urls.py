"""
URL configuration for the back office.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),

    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),
    path('v1/rbac/', include('apps.rbac.urls')),
    path('v1/companies/', include('apps.companies.urls')),
    path('v1/handovers/', include('apps.handovers.urls')),
]
