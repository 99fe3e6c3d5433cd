import logging
from typing import List, Optional, Union

import firebase_admin
from firebase_admin import firestore
from pydantic import ValidationError

from .schemas import (
    CropRecommendationInput,
    CropRecommendationOutput,
    CropRecommendationRecord,
    DiseaseDetectionOutput,
    DiseaseDetectionRecord,
)

logger = logging.getLogger(__name__)

CROP_RECOMMENDATIONS = "cropRecommendations"
DISEASE_DETECTIONS = "diseaseDetections"

RECORD_MODELS = {
    CROP_RECOMMENDATIONS: CropRecommendationRecord,
    DISEASE_DETECTIONS: DiseaseDetectionRecord,
}

HistoryRecord = Union[CropRecommendationRecord, DiseaseDetectionRecord]


class UnknownHistoryKind(KeyError):
    pass


def init_firestore(app: Optional[firebase_admin.App]):
    if app is None:
        return None
    try:
        db = firestore.client(app)
        logger.info("✅ Firestore client initialized successfully.")
        return db
    except Exception as e:
        logger.error("❌ Error initializing Firestore: %s", e)
        return None


class HistoryStore:
    """Per-user history kept in Firestore under ``users/{uid}/{kind}``.

    Records are write-once: they are added after a successful AI call and
    only ever removed by their owner.
    """

    def __init__(self, db):
        self.db = db

    def _collection(self, uid: str, kind: str):
        if kind not in RECORD_MODELS:
            raise UnknownHistoryKind(kind)
        return self.db.collection("users").document(uid).collection(kind)

    def _add(self, uid: str, kind: str, record: dict) -> str:
        record["userId"] = uid
        record["createdAt"] = firestore.SERVER_TIMESTAMP
        _, doc_ref = self._collection(uid, kind).add(record)
        logger.info("✅ %s record %s saved for user %s.", kind, doc_ref.id, uid)
        return doc_ref.id

    def add_crop_recommendation(
        self, uid: str, inputs: CropRecommendationInput, output: CropRecommendationOutput
    ) -> str:
        return self._add(uid, CROP_RECOMMENDATIONS, {"inputs": inputs.model_dump(), "output": output.model_dump()})

    def add_disease_detection(self, uid: str, photo_data_uri: str, output: DiseaseDetectionOutput) -> str:
        return self._add(
            uid, DISEASE_DETECTIONS, {"photoDataUri": photo_data_uri, "output": output.model_dump(by_alias=True)}
        )

    def list(self, uid: str, kind: str) -> List[HistoryRecord]:
        """Records of one kind, newest first. Documents that no longer parse are skipped."""
        model = RECORD_MODELS.get(kind)
        query = self._collection(uid, kind).order_by("createdAt", direction=firestore.Query.DESCENDING)
        records = []
        for doc in query.stream():
            try:
                records.append(model.model_validate({"id": doc.id, **doc.to_dict()}))
            except ValidationError as e:
                logger.warning("⚠️ Skipping malformed %s record %s for user %s: %s", kind, doc.id, uid, e)
        return records

    def delete(self, uid: str, kind: str, record_id: str) -> bool:
        doc_ref = self._collection(uid, kind).document(record_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        logger.info("🗑️ %s record %s deleted for user %s.", kind, record_id, uid)
        return True
