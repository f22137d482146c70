from rest_framework import serializers


class ContractCourierSerializer(serializers.Serializer):
    # null fires the current contracted courier
    courier_id = serializers.UUIDField(allow_null=True)
