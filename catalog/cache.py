from django.core.cache import caches

from .models import Service


class CatalogCache:
    """
    Per-kind cache of the active service listing.

    The backend and TTL are passed in explicitly; tests give each catalog its
    own ``LocMemCache`` so nothing leaks between them.
    """

    def __init__(self, backend=None, ttl=300, prefix='catalog'):
        self.backend = backend if backend is not None else caches['default']
        self.ttl = ttl
        self.prefix = prefix

    def _key(self, kind):
        return f'{self.prefix}:active:{kind}'

    def get(self, kind):
        return self.backend.get(self._key(kind))

    def set(self, kind, services):
        if self.ttl:
            self.backend.set(self._key(kind), services, timeout=self.ttl)

    def invalidate(self, kind):
        self.backend.delete(self._key(kind))

    def clear(self):
        for kind, _ in Service.KIND_CHOICES:
            self.invalidate(kind)
