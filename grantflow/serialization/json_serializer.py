# grantflow/serialization/json_serializer.py
import json
from typing import Dict, Any

from grantflow.serialization.base import BaseSerializer


class JsonSerializer(BaseSerializer):
    def serialize_payload(self, payload: Dict[str, Any]) -> str:
        # Dates and other non-JSON scalars degrade to their string form.
        return json.dumps(payload or {}, default=str)

    def deserialize_payload(self, data: str) -> Dict[str, Any]:
        if not data:
            return {}
        if isinstance(data, dict):
            return data
        return json.loads(data)

    def serialize_state_data(self, data: Dict[str, Any]) -> str:
        if data is None:
            return "{}"
        if isinstance(data, str):
            return data
        return json.dumps(data, default=str)

    def deserialize_state_data(self, data_str: str) -> Dict[str, Any]:
        if not data_str:
            return {}
        if isinstance(data_str, dict):
            return data_str
        try:
            return json.loads(data_str)
        except (TypeError, json.JSONDecodeError):
            return {}
