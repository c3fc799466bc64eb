import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

logger = logging.getLogger(__name__)

MANAGED_BY_LABELS = {
    "app.kubernetes.io/managed-by": "vex8s-controller",
    "app.kubernetes.io/component": "vex-document",
}
UPDATED_AT_ANNOTATION = "vex8s.io/updated-at"


class FragmentStoreError(Exception):
    """The fragment store could not be read or written"""


class FragmentConflictError(FragmentStoreError):
    """Optimistic concurrency retries were exhausted"""


class FragmentStore(ABC):
    """Per-workload keyed storage for serialized VEX fragments"""

    @abstractmethod
    def put(self, key: str, value: str, unchanged: Optional[Callable[[str], bool]] = None) -> bool:
        """Create or replace the fragment stored under key.

        unchanged(existing) may report a stored value as equivalent to the new
        one, in which case nothing is written. Returns True when the store was
        written.
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the fragment under key; returns False when it was not there"""
        pass

    @abstractmethod
    def list_fragments(self) -> Dict[str, str]:
        """Snapshot of every stored fragment keyed by workload key"""
        pass


class ConfigMapFragmentStore(FragmentStore):
    """Fragments kept as data keys of a single ConfigMap.

    Every write is a read-modify-write of the ConfigMap that only touches its
    own key. The read resourceVersion is sent back with the replace, so a
    concurrent writer makes the API server answer 409 and the write is retried
    against fresh contents.
    """

    def __init__(self, core_api, namespace: str, name: str, max_attempts: int = 5):
        self.v1 = core_api
        self.namespace = namespace
        self.name = name
        self.max_attempts = max(1, max_attempts)

    def _read(self):
        try:
            return self.v1.read_namespaced_config_map(self.name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise FragmentStoreError(
                f"failed to get ConfigMap {self.namespace}/{self.name}: {e.status} {e.reason}"
            ) from e

    def _stamp(self, config_map):
        metadata = config_map.metadata
        metadata.labels = {**(metadata.labels or {}), **MANAGED_BY_LABELS}
        metadata.annotations = {
            **(metadata.annotations or {}),
            UPDATED_AT_ANNOTATION: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    def _create(self, key: str, value: str) -> bool:
        """Create the ConfigMap holding one key; False if someone created it first"""
        config_map = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=self.name, namespace=self.namespace),
            data={key: value},
        )
        self._stamp(config_map)
        try:
            self.v1.create_namespaced_config_map(self.namespace, config_map)
            logger.info(f"Created fragment ConfigMap {self.namespace}/{self.name} with key {key}")
            return True
        except ApiException as e:
            if e.status == 409:
                return False
            raise FragmentStoreError(
                f"failed to create ConfigMap {self.namespace}/{self.name}: {e.status} {e.reason}"
            ) from e

    def _replace(self, config_map, data: Dict[str, str]) -> bool:
        """Write data back over the ConfigMap that was read; False on a resourceVersion conflict"""
        body = client.V1ConfigMap(
            metadata=copy.deepcopy(config_map.metadata),
            data=data,
            binary_data=config_map.binary_data,
        )
        self._stamp(body)
        try:
            self.v1.replace_namespaced_config_map(self.name, self.namespace, body)
            return True
        except ApiException as e:
            if e.status == 409:
                return False
            raise FragmentStoreError(
                f"failed to update ConfigMap {self.namespace}/{self.name}: {e.status} {e.reason}"
            ) from e

    def put(self, key: str, value: str, unchanged: Optional[Callable[[str], bool]] = None) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            config_map = self._read()
            if config_map is None:
                if self._create(key, value):
                    return True
            else:
                data = dict(config_map.data or {})
                existing = data.get(key)
                if existing == value or (existing is not None and unchanged and unchanged(existing)):
                    logger.debug(f"VEX fragment {key} unchanged, skipping write")
                    return False
                data[key] = value
                if self._replace(config_map, data):
                    logger.info(f"Stored VEX fragment {key} in {self.namespace}/{self.name}")
                    return True
            logger.info(f"Conflict writing fragment {key} (attempt {attempt}/{self.max_attempts}), retrying")

        raise FragmentConflictError(f"gave up writing fragment {key} after {self.max_attempts} conflicts")

    def delete(self, key: str) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            config_map = self._read()
            if config_map is None or key not in (config_map.data or {}):
                return False
            data = dict(config_map.data)
            del data[key]
            if self._replace(config_map, data):
                logger.info(f"Removed VEX fragment {key} from {self.namespace}/{self.name}")
                return True
            logger.info(f"Conflict removing fragment {key} (attempt {attempt}/{self.max_attempts}), retrying")

        raise FragmentConflictError(f"gave up removing fragment {key} after {self.max_attempts} conflicts")

    def list_fragments(self) -> Dict[str, str]:
        config_map = self._read()
        if config_map is None:
            return {}
        return dict(config_map.data or {})
