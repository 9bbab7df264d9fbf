from rest_framework.routers import DefaultRouter

from sales.views import CustomerViewSet, InvoiceViewSet, OrderViewSet, ProductViewSet

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"invoices", InvoiceViewSet, basename="invoice")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"customers", CustomerViewSet, basename="customer")

urlpatterns = router.urls
