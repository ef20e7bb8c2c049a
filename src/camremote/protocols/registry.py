"""
Method Registry

Keeps, per service, the operations advertised by the device (name, numeric
id, available versions) and resolves an operation name to a fully qualified
descriptor. Catalogues are fetched lazily, once per service, through
``getMethodTypes`` and cached for the lifetime of the registry.
"""

import itertools
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import AmbiguousOperation, UnknownOperation

logger = logging.getLogger(__name__)

CATALOGUE_METHOD = "getMethodTypes"
CATALOGUE_VERSION = "1.0"


@dataclass(frozen=True)
class OperationDescriptor:
    """Fully qualified operation: what the request body carries."""
    name: str
    service: str
    id: int
    version: str


def version_key(version: str) -> Tuple:
    """
    Sort key for dotted version strings.

    Numeric components compare numerically ("1.10" > "1.2"); anything else
    falls back to string comparison.
    """
    key = []
    for part in re.split(r"[.\-]", version):
        if part.isdigit():
            key.append((1, int(part), ""))
        else:
            key.append((0, 0, part))
    return tuple(key)


class MethodRegistry:
    """
    Registry of the operations each service advertises.

    Args:
        services: Service names available on the device (endpoint keys)
        fetch_catalogue: Callable taking a bootstrap descriptor for
            ``getMethodTypes`` on one service and returning its rows,
            each ``[name, param_types, result_types, version]``
    """

    def __init__(self, services: Iterable[str],
                 fetch_catalogue: Callable[[OperationDescriptor], List[List[Any]]]):
        self.services = list(services)
        self._fetch_catalogue = fetch_catalogue
        self._catalogues: Dict[str, Dict[str, List[str]]] = {}
        self._ids: Dict[Tuple[str, str], int] = {}
        self._id_counter = itertools.count(1)
        self._resolved: Dict[Tuple, OperationDescriptor] = {}

    def bootstrap_descriptor(self, service: str) -> OperationDescriptor:
        """Descriptor of ``getMethodTypes``, usable before any catalogue is loaded."""
        return OperationDescriptor(CATALOGUE_METHOD, service, 0, CATALOGUE_VERSION)

    def catalogue(self, service: str) -> Dict[str, List[str]]:
        """
        Catalogue of one service, loading it on first use.

        Returns:
            Mapping of operation name to its versions, ascending
        """
        if service not in self._catalogues:
            rows = self._fetch_catalogue(self.bootstrap_descriptor(service)) or []
            methods: Dict[str, List[str]] = {}
            for row in rows:
                if not row or len(row) < 4:
                    logger.debug("Ignoring malformed method row on %s: %r", service, row)
                    continue
                name, version = row[0], row[3]
                versions = methods.setdefault(name, [])
                if version not in versions:
                    versions.append(version)
                if (name, service) not in self._ids:
                    self._ids[(name, service)] = next(self._id_counter)
            for versions in methods.values():
                versions.sort(key=version_key)
            self._catalogues[service] = methods
            logger.debug("Loaded %d methods for service '%s'", len(methods), service)
        return self._catalogues[service]

    def _providers(self, name: str, service: Optional[str]) -> List[str]:
        candidates = [service] if service else self.services
        providers = []
        for candidate in candidates:
            if candidate not in self.services:
                continue
            if name in self.catalogue(candidate):
                providers.append(candidate)
        return providers

    def resolve(self, name: str, service: Optional[str] = None,
                version: Optional[str] = None, id: Optional[int] = None) -> OperationDescriptor:
        """
        Resolve an operation name to a descriptor.

        Args:
            name: Operation name, e.g. "actTakePicture"
            service: Service to use when several advertise the name
            version: Explicit version; the highest one is used otherwise
            id: Explicit request id overriding the assigned one

        Returns:
            OperationDescriptor

        Raises:
            UnknownOperation: No (matching) service advertises the name/version
            AmbiguousOperation: Several services advertise it and no service was given
        """
        cache_key = (name, service, version, id)
        if cache_key in self._resolved:
            return self._resolved[cache_key]

        if name == CATALOGUE_METHOD and service:
            descriptor = self.bootstrap_descriptor(service)
            if id is not None:
                descriptor = OperationDescriptor(descriptor.name, descriptor.service, id, descriptor.version)
            return descriptor

        providers = self._providers(name, service)
        if not providers:
            where = f"service '{service}'" if service else "any service"
            raise UnknownOperation(f"Method '{name}' is not provided by {where}")
        if len(providers) > 1:
            raise AmbiguousOperation(name, providers)

        chosen = providers[0]
        versions = self.catalogue(chosen)[name]
        if version is None:
            version = versions[-1]
        elif version not in versions:
            raise UnknownOperation(
                f"Method '{name}' on '{chosen}' has no version {version} (available: {', '.join(versions)})")

        descriptor = OperationDescriptor(
            name=name,
            service=chosen,
            id=self._ids[(name, chosen)] if id is None else id,
            version=version,
        )
        self._resolved[cache_key] = descriptor
        return descriptor

    def supports(self, name: str) -> bool:
        """True if any service advertises the operation."""
        return bool(self._providers(name, None))

    def names(self, service: Optional[str] = None) -> List[str]:
        """Sorted names advertised by one service, or by all of them."""
        services = [service] if service else self.services
        names = set()
        for candidate in services:
            names.update(self.catalogue(candidate))
        return sorted(names)

    def versions(self, name: str, service: str) -> List[str]:
        return list(self.catalogue(service).get(name, []))
