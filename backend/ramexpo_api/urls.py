from django.urls import include, path

urlpatterns = [
    path("api/", include("api.urls")),
    path("api/procurement/", include("procurement.urls")),
    path("api/tally/", include("tally.urls")),
    path("api/gqr-data/", include("procurement.export_urls")),
]
