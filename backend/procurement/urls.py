from django.urls import path

from procurement.views import (
    gqr_collection,
    gqr_detail,
    masters_collection,
    masters_detail,
    pre_gr_approve,
    pre_gr_collection,
    pre_gr_detail,
    pre_gr_eligible_for_gqr,
    purchase_order_close,
    purchase_order_detail,
    purchase_order_next_voucher,
    purchase_orders_collection,
    vendor_performance_report,
)

urlpatterns = [
    path("masters/<str:kind>/", masters_collection, name="masters_collection"),
    path("masters/<str:kind>/<str:object_id>/", masters_detail, name="masters_detail"),
    path("purchase-orders/", purchase_orders_collection, name="purchase_orders_collection"),
    path(
        "purchase-orders/next-voucher/",
        purchase_order_next_voucher,
        name="purchase_order_next_voucher",
    ),
    path("purchase-orders/<int:po_id>/", purchase_order_detail, name="purchase_order_detail"),
    path(
        "purchase-orders/<int:po_id>/close/",
        purchase_order_close,
        name="purchase_order_close",
    ),
    path("pre-gr/", pre_gr_collection, name="pre_gr_collection"),
    path(
        "pre-gr/eligible-for-gqr/",
        pre_gr_eligible_for_gqr,
        name="pre_gr_eligible_for_gqr",
    ),
    path("pre-gr/<int:pre_gr_id>/", pre_gr_detail, name="pre_gr_detail"),
    path("pre-gr/<int:pre_gr_id>/approve/", pre_gr_approve, name="pre_gr_approve"),
    path("gqr/", gqr_collection, name="gqr_collection"),
    path("gqr/<int:gqr_id>/", gqr_detail, name="gqr_detail"),
    path(
        "reports/vendor-performance/",
        vendor_performance_report,
        name="vendor_performance_report",
    ),
]
