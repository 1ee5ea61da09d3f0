# grantflow/serialization/base.py
from abc import ABC, abstractmethod
from typing import Dict, Any


class BaseSerializer(ABC):
    @abstractmethod
    def serialize_payload(self, payload: Dict[str, Any]) -> str: ...

    @abstractmethod
    def deserialize_payload(self, data: str) -> Dict[str, Any]: ...

    @abstractmethod
    def serialize_state_data(self, data: Dict[str, Any]) -> str: ...

    @abstractmethod
    def deserialize_state_data(self, data_str: str) -> Dict[str, Any]: ...
