import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pinecone import Pinecone
from pinecone.exceptions import PineconeException

from .errors import NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)

CONTENT_METADATA_CHARS = 8000


@dataclass
class VectorMatch:
    file_id: str
    score: float
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """
    Pinecone index with one namespace per owner, one record per file.
    """

    def __init__(self, api_key: str = "", index_name: str = "", index: Optional[Any] = None) -> None:
        self.index_name = index_name
        if index is None and api_key and index_name:
            index = Pinecone(api_key=api_key).Index(index_name)
        elif api_key and not index_name:
            logger.warning("PINECONE_INDEX is not configured.")
        self._index = index

    @classmethod
    def from_settings(cls, settings) -> "VectorIndex":
        return cls(api_key=settings.pinecone_api_key, index_name=settings.pinecone_index)

    @property
    def configured(self) -> bool:
        return self._index is not None

    @property
    def index(self):
        if self._index is None:
            raise NotConfiguredError("Vector index not configured")
        return self._index

    def upsert_document(
        self,
        user_id: str,
        file_id: str,
        embedding: List[float],
        content: str,
        metadata: Dict[str, Any],
    ) -> None:
        # Pinecone rejects null metadata values
        record_metadata = {k: v for k, v in metadata.items() if v is not None}
        record_metadata["content"] = content[:CONTENT_METADATA_CHARS]
        try:
            self.index.upsert(
                vectors=[{"id": file_id, "values": embedding, "metadata": record_metadata}],
                namespace=user_id,
            )
        except PineconeException as exc:
            raise UpstreamError("Vector upsert failed") from exc

    def remove_document(self, user_id: str, file_id: str) -> None:
        try:
            self.index.delete(ids=[file_id], namespace=user_id)
        except PineconeException as exc:
            raise UpstreamError("Vector delete failed") from exc

    def query(self, user_id: str, vector: List[float], top_k: int = 6) -> List[VectorMatch]:
        try:
            results = self.index.query(
                vector=vector,
                namespace=user_id,
                top_k=top_k,
                include_metadata=True,
            )
        except PineconeException as exc:
            raise UpstreamError("Vector query failed") from exc

        matches = []
        for match in getattr(results, "matches", None) or []:
            metadata = dict(match.metadata or {})
            matches.append(
                VectorMatch(
                    file_id=str(match.id),
                    score=match.score or 0.0,
                    content=str(metadata.get("content", "")),
                    metadata=metadata,
                )
            )
        return matches
