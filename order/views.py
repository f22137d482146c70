from django.conf import settings
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from account.permissions import HasCompleteAddress, IsBuyer, IsSeller
from core.exceptions import AuthorizationError

from .models import Order
from .serializers import (
    BuyerOrderSerializer,
    DeliveryMethodSerializer,
    OrderCreateSerializer,
    PickupCodeSerializer,
    StoreOrderSerializer,
)
from .services import OrderService
from .tracking import seller_metrics, tracking_message_for


class CreateOrderView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsBuyer, HasCompleteAddress]
    simulate = False

    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.create_order(
            buyer=request.user,
            shop_id=data["shop_id"],
            items=data["items"],
            total_amount=data.get("total_amount"),
            simulate=self.simulate,
        )
        order = result.order
        body = {
            "success": True,
            "message": "Order created. Awaiting payment." if result.payment else "Simulated order created and paid.",
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": order.status,
            "total_amount": str(order.total_amount),
        }
        if result.payment:
            body["payment"] = result.payment
        return Response(body, status=status.HTTP_201_CREATED)


# e.g
# {
#   "shop_id": "591fa1ee-87ae-4b1a-96eb-c2860df9d9b9",
#   "items": [{"product_id": "223be6e6-5752-441f-82e6-14f2812acb84", "quantity": 2}],
#   "total_amount": "50.00"
# }


class SimulatePurchaseView(CreateOrderView):
    simulate = True

    def post(self, request):
        if not settings.MARKETPLACE.get("ALLOW_SIMULATED_PAYMENTS"):
            raise AuthorizationError("Simulated purchases are disabled.")
        return super().post(request)


class SimulatePaymentView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsBuyer]

    def post(self, request, pk):
        OrderService.simulate_payment(pk, request.user)
        return Response({
            "success": True,
            "message": "Simulation sent. Waiting for the payment webhook.",
        }, status=status.HTTP_200_OK)


class BuyerOrdersView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsBuyer]

    def get(self, request):
        orders = (
            Order.objects.filter(buyer=request.user)
            .select_related("delivery")
            .prefetch_related("items")
        )
        return Response({"success": True, "orders": BuyerOrderSerializer(orders, many=True).data})


class StoreOrdersView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def get(self, request, shop_id):
        orders = OrderService.list_store_orders(shop_id, request.user)
        return Response({"success": True, "orders": StoreOrderSerializer(orders, many=True).data})


class SellerMetricsView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def get(self, request):
        config = settings.MARKETPLACE
        return Response({
            "success": True,
            "pending_balance": str(request.user.pending_balance),
            "marketplace_fee_rate": str(config["FEE_RATE"]),
            "courier_delivery_fee": str(config["COURIER_DELIVERY_FEE"]),
            "metrics": seller_metrics(request.user),
        })


class OrderDeliveryMethodView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def post(self, request, pk):
        serializer = DeliveryMethodSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delivery = OrderService.set_delivery_method(pk, request.user, serializer.validated_data["method"])
        return Response({
            "success": True,
            "message": f"Delivery method set to {delivery.method}.",
            "order_id": str(delivery.order_id),
            "order_status": Order.Status.DELIVERING,
            "delivery_status": delivery.status,
            "courier_id": str(delivery.courier_id) if delivery.courier_id else None,
        }, status=status.HTTP_200_OK)


class DispatchOrderView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def put(self, request, pk):
        delivery = OrderService.dispatch_self(pk, request.user)
        return Response({
            "success": True,
            "message": "Order dispatched for own delivery.",
            "order_id": str(delivery.order_id),
            "order_status": Order.Status.DELIVERING,
            "delivery_status": delivery.status,
        }, status=status.HTTP_200_OK)


class ConfirmPickupView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def put(self, request, pk):
        serializer = PickupCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        delivery = OrderService.confirm_pickup(pk, request.user, serializer.validated_data["pickup_code"])
        return Response({
            "success": True,
            "message": "Pickup confirmed. The order is on its way.",
            "order_id": str(delivery.order_id),
            "delivery_status": delivery.status,
            "picked_up_at": delivery.picked_up_at,
        }, status=status.HTTP_200_OK)


class OrderStatusView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsBuyer]

    def get(self, request, pk):
        order = OrderService.get_buyer_order(pk, request.user)
        order = OrderService.reconcile_payment(order)
        delivery = getattr(order, "delivery", None)
        return Response({
            "success": True,
            "order_id": str(order.id),
            "status": order.status,
            "delivery_method": order.delivery_method,
            "delivery_status": delivery.status if delivery else None,
            "tracking_message": tracking_message_for(order),
        })
