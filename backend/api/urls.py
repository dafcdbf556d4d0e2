from django.urls import path

from api.views import admin_user_detail, admin_users, cron_ping, health, whoami

urlpatterns = [
    path("health/", health, name="health"),
    path("auth/whoami/", whoami, name="whoami"),
    path("admin/users/", admin_users, name="admin_users"),
    path("admin/users/<uuid:user_id>/", admin_user_detail, name="admin_user_detail"),
    path("cron/ping/", cron_ping, name="cron_ping"),
]
