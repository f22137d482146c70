from django.urls import path
from .views import *
urlpatterns = [
    path('<uuid:pk>/contract/', ContractCourierView.as_view(), name='shop-contract-courier'),
]
