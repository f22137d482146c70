from rest_framework.serializers import ModelSerializer
from django.contrib.auth import get_user_model
User = get_user_model()


class UserSerializer(ModelSerializer):
    class Meta:
        model = User
        fields = [
            'id', 'email', 'full_name', 'role',
            'address_street', 'address_number', 'address_nearby', 'city', 'district', 'contact_number',
            'pending_balance', 'is_available', 'created_at', 'updated_at',
        ]
        read_only_fields = ('id', 'email', 'role', 'pending_balance', 'is_available', 'created_at', 'updated_at')


class CourierSummarySerializer(ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'full_name', 'email', 'is_available']
