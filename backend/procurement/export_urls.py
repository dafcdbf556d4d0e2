from django.urls import path

from procurement.export_views import gqr_data, gqr_export_xlsx, gqr_update_status

urlpatterns = [
    path("", gqr_data, name="gqr_data"),
    path("update-status/", gqr_update_status, name="gqr_update_status"),
    path("export.xlsx", gqr_export_xlsx, name="gqr_export_xlsx"),
]
