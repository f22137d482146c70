from rest_framework import permissions
from rest_framework.generics import RetrieveUpdateAPIView
from .serializers import *


class CurrentUserView(RetrieveUpdateAPIView):
    """Profile of the authenticated user; buyers fill in their delivery address here."""
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = UserSerializer

    def get_object(self):
        return self.request.user
