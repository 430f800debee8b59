"""
Registry of erasure coding configurations (codecs).
"""
import json
import logging
import re
from typing import Any, Dict, Iterable, List

from ..errors import RaidConfigurationError
from ..models import Codec

logger = logging.getLogger(__name__)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")

REQUIRED_FIELDS = (
    "id", "parity_dir", "tmp_parity_dir", "tmp_har_dir",
    "stripe_length", "parity_length", "priority", "erasure_code",
)


def codec_from_dict(record: Dict[str, Any]) -> Codec:
    """Build a Codec from one registry record"""
    missing = [f for f in REQUIRED_FIELDS if f not in record]
    if missing:
        raise RaidConfigurationError(f"Codec record missing fields {missing}: {record}")
    try:
        stripe_length = int(record["stripe_length"])
        parity_length = int(record["parity_length"])
        priority = int(record["priority"])
    except (TypeError, ValueError):
        raise RaidConfigurationError(f"Codec {record['id']} has non-integer sizing")
    if stripe_length < 1 or parity_length < 1:
        raise RaidConfigurationError(
            f"Codec {record['id']} needs stripe_length and parity_length >= 1"
        )
    return Codec(
        id=str(record["id"]),
        parity_directory=str(record["parity_dir"]),
        tmp_parity_directory=str(record["tmp_parity_dir"]),
        tmp_har_directory=str(record["tmp_har_dir"]),
        stripe_length=stripe_length,
        parity_length=parity_length,
        priority=priority,
        erasure_code=str(record["erasure_code"]),
        description=str(record.get("description", "")),
    )


class CodecRegistry:
    """Codecs loaded once from configuration, looked up by id"""

    def __init__(self, codecs: Iterable[Codec] = ()):
        self._codecs: Dict[str, Codec] = {}
        for codec in codecs:
            if codec.id in self._codecs:
                raise RaidConfigurationError(f"Duplicate codec id {codec.id}")
            self._codecs[codec.id] = codec

    @classmethod
    def from_json(cls, text: str) -> "CodecRegistry":
        try:
            records = json.loads(_TRAILING_COMMA.sub(r"\1", text))
        except json.JSONDecodeError as e:
            raise RaidConfigurationError(f"Malformed codec JSON: {e}")
        if not isinstance(records, list):
            raise RaidConfigurationError("Codec JSON must be a list of records")
        registry = cls(codec_from_dict(r) for r in records)
        for codec in registry.get_codecs():
            logger.info(f"Loaded raid code: {codec.id}")
        return registry

    def get_codec(self, codec_id: str) -> Codec:
        try:
            return self._codecs[codec_id]
        except KeyError:
            raise RaidConfigurationError(f"Unknown codec {codec_id}")

    def has_codec(self, codec_id: str) -> bool:
        return codec_id in self._codecs

    def get_codecs(self) -> List[Codec]:
        """All codecs, highest priority first"""
        return sorted(self._codecs.values(), key=lambda c: c.priority, reverse=True)

    def __len__(self) -> int:
        return len(self._codecs)
