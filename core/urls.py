# core/urls.py
from django.contrib import admin
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from accounts.views import LoginEmailPasswordView, MeView, NotificationViewSet, StudentGroupViewSet
from virtual_room.urls import api_urlpatterns as virtual_room_api

router = DefaultRouter()
router.register(r"notifications", NotificationViewSet, basename="notification")
router.register(r"groups", StudentGroupViewSet, basename="group")


urlpatterns = [
    path('admin/', admin.site.urls),

    path("api/auth/login/", LoginEmailPasswordView.as_view(), name="auth-login"),
    path("api/auth/me/", MeView.as_view(), name="auth-me"),

    path("api/virtual-room/", include(virtual_room_api)),
    path("virtual-room/", include("virtual_room.urls")),

    path("api/", include("simulations.urls")),
    path("api/", include(router.urls)),
]
