import logging

from pymongo import ReturnDocument

from loan_channel.database.models.counter_model import Counter

logger = logging.getLogger(__name__)


class CounterService:
    """Process-wide monotonic sequences, one per prefix.

    Allocation is a single atomic ``$inc`` with upsert, so concurrent callers
    never receive the same number.
    """

    async def next_value(self, prefix: str) -> int:
        collection = Counter.get_motor_collection()
        doc = await collection.find_one_and_update(
            {"prefix": prefix},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    async def next_code(self, prefix: str, width: int = 4) -> str:
        seq = await self.next_value(prefix)
        code = f"{prefix}{seq:0{width}d}"
        logger.debug(f"Allocated code {code}")
        return code


counter_service = CounterService()
