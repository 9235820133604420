"""Promotional offers shown on the home page. Read-only here."""

from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog import to_object_id
from database import get_documents
from errors import DataError
from schemas import Offer

OFFERS = "offers"


class OfferService:
    def __init__(self, db: Database):
        self.db = db

    def list_all(self) -> List[Offer]:
        try:
            docs = get_documents(self.db, OFFERS)
        except PyMongoError as e:
            raise DataError("fetch offers", e)
        return [Offer.from_document(d) for d in docs]

    def list_active(self) -> List[Offer]:
        try:
            docs = get_documents(self.db, OFFERS, {"active": True})
        except PyMongoError as e:
            raise DataError("fetch active offers", e)
        return [Offer.from_document(d) for d in docs]

    def get(self, offer_id: str) -> Optional[Offer]:
        oid = to_object_id(offer_id)
        if oid is None:
            return None
        try:
            doc = self.db[OFFERS].find_one({"_id": oid})
        except PyMongoError as e:
            raise DataError("fetch offer", e)
        return Offer.from_document(doc)
