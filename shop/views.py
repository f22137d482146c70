from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from account.permissions import IsSeller
from account.serializers import CourierSummarySerializer

from .serializers import ContractCourierSerializer
from .services import ShopService


class ContractCourierView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsSeller]

    def put(self, request, pk):
        serializer = ContractCourierSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        courier_id = serializer.validated_data["courier_id"]

        shop = ShopService.set_contracted_courier(pk, request.user, courier_id)
        action = "hired" if courier_id else "dismissed"
        return Response({
            "success": True,
            "message": f"Courier {action} successfully.",
            "shop_id": str(shop.id),
            "contracted_courier_id": str(shop.contracted_courier_id) if shop.contracted_courier_id else None,
            "contracted_courier": CourierSummarySerializer(shop.contracted_courier).data if shop.contracted_courier else None,
        }, status=status.HTTP_200_OK)
