# jarvis_link/store.py
"""
Key/value configuration store for tone, activation phrase and protocols
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .state import ActionType, CustomProtocol, ProtocolAction, Tone

logger = logging.getLogger(__name__)

TONE_KEY = "jarvis_tone"
WAKE_WORD_KEY = "jarvis_wakeword"
PROTOCOLS_KEY = "jarvis_protocols"

DEFAULT_ACTIVATION_PHRASE = "Jarvis"


class ConfigStore(ABC):
    """Opaque string persistence; no schema versioning"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass


class JsonConfigStore(ConfigStore):
    """Stores every entry in one JSON object file, rewritten on each set"""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        self._data: Dict[str, str] = {}
        self.load()

    def load(self) -> None:
        """Load entries from disk; a missing or unreadable file reads as empty"""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level value is not an object")
            self._data = {str(k): str(v) for k, v in data.items()}
            logger.info(f"Loaded {len(self._data)} config entries from {self.path}")
        except FileNotFoundError:
            logger.info(f"No config store at {self.path}, starting empty")
            self._data = {}
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Invalid config store {self.path}: {e}")
            self._data = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved config entry {key}")


# ---------------------------------------------------------------------- #
# typed accessors
# ---------------------------------------------------------------------- #
def load_tone(store: ConfigStore) -> Tone:
    return Tone.parse(store.get(TONE_KEY))


def save_tone(store: ConfigStore, tone: Tone) -> None:
    store.set(TONE_KEY, tone.value)


def load_activation_phrase(store: ConfigStore) -> str:
    phrase = (store.get(WAKE_WORD_KEY) or "").strip()
    return phrase or DEFAULT_ACTIVATION_PHRASE


def save_activation_phrase(store: ConfigStore, phrase: str) -> None:
    store.set(WAKE_WORD_KEY, phrase)


def protocol_to_dict(protocol: CustomProtocol) -> Dict[str, Any]:
    return {
        "id": protocol.id,
        "name": protocol.name,
        "triggerPhrase": protocol.trigger_phrase,
        "actions": [{"type": a.type.value, "payload": a.payload} for a in protocol.actions],
    }


def protocol_from_dict(data: Dict[str, Any]) -> CustomProtocol:
    """Build a protocol from its stored form; raises ValueError/KeyError on bad entries"""
    actions = tuple(
        ProtocolAction(type=ActionType(a["type"]), payload=str(a.get("payload", "")))
        for a in data["actions"]
    )
    return CustomProtocol(
        id=str(data["id"]),
        name=str(data["name"]),
        trigger_phrase=str(data["triggerPhrase"]).lower(),
        actions=actions,
    )


def load_protocols(store: ConfigStore) -> List[CustomProtocol]:
    raw = store.get(PROTOCOLS_KEY)
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Stored protocol list is not valid JSON: {e}")
        return []
    if not isinstance(entries, list):
        logger.error("Stored protocol list is not a list")
        return []

    protocols = []
    for entry in entries:
        try:
            protocols.append(protocol_from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid protocol entry {entry!r}: {e}")
    logger.info(f"Loaded {len(protocols)} protocols")
    return protocols


def save_protocols(store: ConfigStore, protocols: List[CustomProtocol]) -> None:
    store.set(PROTOCOLS_KEY, json.dumps([protocol_to_dict(p) for p in protocols]))
