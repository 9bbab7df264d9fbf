"""Key-value persistence for the ERP collections.

Both stores keep raw JSON text per key, so a payload that no longer parses
surfaces as `CorruptPersistedStateError` instead of silently vanishing.
"""
import json
import logging

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from common.exceptions import CorruptPersistedStateError
from core.models import StoredCollection

logger = logging.getLogger(__name__)


def _encode(value):
    return json.dumps(value, cls=DjangoJSONEncoder, ensure_ascii=False)


def _decode(key, raw):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise CorruptPersistedStateError(key, f"Stored value for '{key}' is not valid JSON.") from exc


class BaseStore:
    def __init__(self, prefix=None):
        self.prefix = settings.ERP_STORE_KEY_PREFIX if prefix is None else prefix

    def storage_key(self, key):
        return f"{self.prefix}{key}"

    def get(self, key):
        return _decode(key, self.read_raw(key))

    def set(self, key, value):
        self.write_raw(key, _encode(value))

    def read_raw(self, key):
        raise NotImplementedError

    def write_raw(self, key, raw):
        raise NotImplementedError


class DatabaseStore(BaseStore):
    """Store backed by the `StoredCollection` table."""

    def read_raw(self, key):
        row = StoredCollection.objects.filter(key=self.storage_key(key)).values_list("payload", flat=True).first()
        return row

    def write_raw(self, key, raw):
        StoredCollection.objects.update_or_create(key=self.storage_key(key), defaults={"payload": raw})
        logger.debug("store_write", extra={"key": self.storage_key(key)})

    def delete(self, key):
        StoredCollection.objects.filter(key=self.storage_key(key)).delete()


class MemoryStore(BaseStore):
    """Process-local store, used by tests and scripts."""

    def __init__(self, initial=None, prefix=""):
        super().__init__(prefix=prefix)
        self.data = {}
        for key, raw in (initial or {}).items():
            self.write_raw(key, raw)

    def read_raw(self, key):
        return self.data.get(self.storage_key(key))

    def write_raw(self, key, raw):
        self.data[self.storage_key(key)] = raw

    def delete(self, key):
        self.data.pop(self.storage_key(key), None)
