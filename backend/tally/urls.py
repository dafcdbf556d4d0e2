from django.urls import path

from tally.views import tally_companies, tally_post_gqr, tally_post_po, tally_status

urlpatterns = [
    path("companies/", tally_companies, name="tally_companies"),
    path("status/", tally_status, name="tally_status"),
    path("post-po/", tally_post_po, name="tally_post_po"),
    path("post-gqr/", tally_post_gqr, name="tally_post_gqr"),
]
