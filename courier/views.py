from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from account.permissions import IsCourier
from order.services import OrderService
from order.tracking import courier_metrics

from . import services
from .serializers import AvailableDeliverySerializer, ConfirmDeliverySerializer, CurrentDeliverySerializer


class AvailableDeliveriesView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsCourier]

    def get(self, request):
        if not request.user.is_available:
            return Response({
                "success": True,
                "message": "You already have an active delivery. Finish it to see new ones.",
                "deliveries": [],
            })

        deliveries = services.list_available_deliveries(request.user)
        return Response({
            "success": True,
            "deliveries": AvailableDeliverySerializer(deliveries, many=True).data,
        })


class AcceptDeliveryView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsCourier]

    def put(self, request, order_id):
        delivery = services.claim_delivery(order_id, request.user)
        return Response({
            "success": True,
            "message": "Delivery accepted. Show the pickup code at the store.",
            "order_id": str(delivery.order_id),
            "delivery_status": delivery.status,
            "pickup_code": delivery.order.delivery_pickup_code,
        }, status=status.HTTP_200_OK)


class CurrentDeliveryView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsCourier]

    def get(self, request):
        delivery = services.current_delivery(request.user)
        if delivery is None:
            return Response({
                "success": True,
                "message": "No active delivery.",
                "delivery": None,
                "is_available": request.user.is_available,
            })
        return Response({
            "success": True,
            "delivery": CurrentDeliverySerializer(delivery).data,
            "is_available": request.user.is_available,
        })


class CourierMetricsView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsCourier]

    def get(self, request):
        return Response({
            "success": True,
            "pending_balance": str(request.user.pending_balance),
            "metrics": courier_metrics(request.user),
        })


class ConfirmDeliveryView(APIView):
    """Buyer, assigned courier, or the seller on self-delivery."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ConfirmDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.confirm_delivery(data["order_id"], request.user, data["confirmation_code"])
        return Response({
            "success": True,
            "message": "Delivery confirmed. Order completed.",
            "order_id": str(result.order.id),
            "status": result.order.status,
        }, status=status.HTTP_200_OK)
