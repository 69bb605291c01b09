"""Read-only reference dataset backing the supervisor tools."""
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class PolicyDocument(BaseModel):
    """Policy document model."""

    id: str
    name: str
    topic: str
    content: str


class StoreLocation(BaseModel):
    """Store location model."""

    name: str
    address: str
    zip_code: str
    phone: str
    hours: str


class ReferenceData(BaseModel):
    """Everything the tools can look up."""

    account: Dict[str, Any] = {}
    policy_documents: List[PolicyDocument] = []
    stores: List[StoreLocation] = []


class ReferenceDataset:
    """Reference dataset loaded lazily from YAML."""

    def __init__(self, data_file: Optional[str] = None):
        """Initialize with optional data file path."""
        if data_file is None:
            data_file = Path(__file__).parent / "data" / "reference_data.yaml"
        self.data_file = Path(data_file)
        self._data: Optional[ReferenceData] = None

    def _load(self) -> ReferenceData:
        """Load reference data from YAML file."""
        if self._data is None:
            with open(self.data_file, "r") as f:
                self._data = ReferenceData(**(yaml.safe_load(f) or {}))
        return self._data

    def account(self) -> Dict[str, Any]:
        """The sample customer account."""
        return dict(self._load().account)

    def search_policies(self, topic: str) -> List[PolicyDocument]:
        """Policy documents whose topic or content contains the keyword (case-insensitive)."""
        needle = topic.lower().strip()
        return [
            doc
            for doc in self._load().policy_documents
            if needle in doc.topic.lower() or needle in doc.content.lower()
        ]

    def stores_by_zip(self, zip_code: str) -> List[StoreLocation]:
        """Stores located in the given zip code."""
        zip_code = zip_code.strip()
        return [store for store in self._load().stores if store.zip_code == zip_code]
