import logging

from fodsync.models.record import ClassificationRecord, record_id_for_name
from fodsync.schemas.control import DiscoveredProduct
from fodsync.services.messenger import RecordStoreMessenger

logger = logging.getLogger(__name__)


def product_to_record(product: DiscoveredProduct) -> ClassificationRecord:
    record_id = product.external_id.strip() if product.external_id else ""
    return ClassificationRecord(
        id=record_id or record_id_for_name(product.name),
        name=product.name,
        category=product.category or "Uncategorized",
        status=product.status,
        price=product.price,
    )


class DiscoveryService:
    """Registers freshly scraped products as records awaiting classification."""

    def __init__(self, messenger: RecordStoreMessenger) -> None:
        self._messenger = messenger

    async def register(self, products: list[DiscoveredProduct]) -> list[str]:
        """
        Save products not yet known to the store. Products already stored keep their
        classification state. Returns the ids of the records that were created.
        """
        unique: dict[str, ClassificationRecord] = {}
        for product in products:
            record = product_to_record(product)
            unique.setdefault(record.id, record)

        if not unique:
            return []

        new_ids = await self._messenger.save_new_records(list(unique.values()))
        logger.info(
            "[discovery] products registered | received=%d | unique=%d | new=%d",
            len(products),
            len(unique),
            len(new_ids),
        )
        return new_ids
