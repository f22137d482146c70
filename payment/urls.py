from django.urls import path
from .views import AbacatePayWebhookView

urlpatterns = [
    path("webhook/", AbacatePayWebhookView.as_view(), name="abacatepay-webhook"),
]
