from decimal import Decimal

from rest_framework import serializers

from .models import Order, OrderItem
from .tracking import tracking_message_for


class OrderItemInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class OrderCreateSerializer(serializers.Serializer):
    shop_id = serializers.UUIDField()
    items = OrderItemInputSerializer(many=True, allow_empty=False)
    # Optional; when sent it must match the catalog total
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=Decimal("0.01"))


class DeliveryMethodSerializer(serializers.Serializer):
    method = serializers.CharField()

    def validate_method(self, value):
        method = value.strip().lower()
        if method not in {Order.DeliveryMethod.CONTRACTED, Order.DeliveryMethod.MARKETPLACE}:
            raise serializers.ValidationError("Method must be 'contracted' or 'marketplace'.")
        return method


class PickupCodeSerializer(serializers.Serializer):
    # Codes are compared exactly, so whitespace is not trimmed
    pickup_code = serializers.CharField(trim_whitespace=False, max_length=32)


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["product", "product_name", "price", "quantity", "total"]


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    tracking_message = serializers.SerializerMethodField()
    delivery_status = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "shop",
            "status",
            "delivery_method",
            "total_amount",
            "payment_transaction_id",
            "delivery_address",
            "delivery_status",
            "tracking_message",
            "items",
            "created_at",
            "updated_at",
        ]

    def get_tracking_message(self, obj):
        return tracking_message_for(obj)

    def get_delivery_status(self, obj):
        delivery = getattr(obj, "delivery", None)
        return delivery.status if delivery else None


class BuyerOrderSerializer(OrderSerializer):
    """The buyer is the one who hands the confirmation code to the courier."""

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ["delivery_confirmation_code"]


class StoreOrderSerializer(OrderSerializer):
    buyer = serializers.SerializerMethodField()

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ["buyer", "buyer_contact_number"]

    def get_buyer(self, obj):
        return {"id": str(obj.buyer_id), "full_name": obj.buyer.full_name}
