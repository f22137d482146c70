from rest_framework import serializers

from .models import Delivery


class AvailableDeliverySerializer(serializers.ModelSerializer):
    order_id = serializers.UUIDField(source="order.id")
    order_number = serializers.CharField(source="order.order_number")
    total_amount = serializers.DecimalField(source="order.total_amount", max_digits=12, decimal_places=2)
    store_name = serializers.CharField(source="order.shop.name")
    store_address = serializers.CharField(source="order.shop.address")
    delivery_district = serializers.CharField(source="order.delivery_district")
    delivery_city = serializers.CharField(source="order.delivery_city")

    class Meta:
        model = Delivery
        fields = [
            "order_id",
            "order_number",
            "total_amount",
            "store_name",
            "store_address",
            "delivery_district",
            "delivery_city",
            "created_at",
        ]


class CurrentDeliverySerializer(serializers.ModelSerializer):
    """Never carries the buyer's confirmation code."""

    order_id = serializers.UUIDField(source="order.id")
    order_number = serializers.CharField(source="order.order_number")
    order_status = serializers.CharField(source="order.status")
    store_name = serializers.CharField(source="order.shop.name")
    store_address = serializers.CharField(source="order.shop.address")
    delivery_address = serializers.CharField(source="order.delivery_address")
    buyer_contact_number = serializers.CharField(source="order.buyer_contact_number")
    pickup_code = serializers.CharField(source="order.delivery_pickup_code")

    class Meta:
        model = Delivery
        fields = [
            "order_id",
            "order_number",
            "order_status",
            "method",
            "status",
            "store_name",
            "store_address",
            "delivery_address",
            "buyer_contact_number",
            "pickup_code",
            "accepted_at",
            "picked_up_at",
        ]


class ConfirmDeliverySerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    # Codes are compared exactly, so whitespace is not trimmed
    confirmation_code = serializers.CharField(trim_whitespace=False, max_length=32)
