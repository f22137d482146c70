import logging

from django.contrib.auth import get_user_model
from django.db import transaction

from core.exceptions import AuthorizationError, NotFoundError, ValidationError

from .models import Shop

User = get_user_model()
logger = logging.getLogger(__name__)


class ShopService:

    @staticmethod
    @transaction.atomic
    def set_contracted_courier(shop_id, seller, courier_id=None) -> Shop:
        """Hire (courier_id set) or fire (courier_id None) the store's contracted courier."""
        shop = Shop.objects.select_for_update().filter(id=shop_id).first()
        if not shop:
            raise NotFoundError("Store not found")
        if shop.owner_id != seller.id:
            raise AuthorizationError("Only the store owner can manage its contracted courier")

        courier = None
        if courier_id:
            courier = User.objects.filter(id=courier_id, role=User.Role.COURIER).first()
            if not courier:
                raise ValidationError("The given id does not belong to a registered courier")

        shop.contracted_courier = courier
        shop.save(update_fields=["contracted_courier"])
        logger.info(
            "Store %s contracted courier %s",
            shop.id,
            f"set to {courier.id}" if courier else "cleared",
        )
        return shop
