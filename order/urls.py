from django.urls import path
from .views import *
urlpatterns = [
    path('', CreateOrderView.as_view(), name='order-create'),
    path('simulate-purchase/', SimulatePurchaseView.as_view(), name='order-simulate-purchase'),
    path('mine/', BuyerOrdersView.as_view(), name='buyer-orders'),
    path('store/<uuid:shop_id>/', StoreOrdersView.as_view(), name='store-orders'),
    path('seller/metrics/', SellerMetricsView.as_view(), name='seller-metrics'),
    path('<uuid:pk>/simulate-payment/', SimulatePaymentView.as_view(), name='order-simulate-payment'),
    path('<uuid:pk>/delivery-method/', OrderDeliveryMethodView.as_view(), name='order-delivery-method'),
    path('<uuid:pk>/dispatch/', DispatchOrderView.as_view(), name='order-dispatch'),
    path('<uuid:pk>/confirm-pickup/', ConfirmPickupView.as_view(), name='order-confirm-pickup'),
    path('<uuid:pk>/status/', OrderStatusView.as_view(), name='order-status'),
]
