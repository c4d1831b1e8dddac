from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class Counter(Document):
    prefix: str = Field(..., description="Code prefix, e.g. TLA, TLR, TLP, TLC, TLF")
    seq: int = Field(default=0, description="Last allocated sequence number")

    class Settings:
        name = "counters"
        indexes = [IndexModel([("prefix", ASCENDING)], unique=True)]
