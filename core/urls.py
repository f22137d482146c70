
from django.urls import path, include



urlpatterns = [
    path('auth/', include('account.urls')),
    path('shops/', include('shop.urls')),
    path('orders/', include('order.urls')),
    path('deliveries/', include('courier.urls')),
    path('payments/', include('payment.urls')),
]
