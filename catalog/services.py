import copy
import logging

from django.conf import settings
from django.utils import timezone

from audit.log import AuditLog
from core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from core.store import DocumentStore
from .cache import CatalogCache
from .models import Service
from .pricing import PricingInput, compute_final_price, pricing_from_document
from .sample_data import SAMPLE_SERVICES

logger = logging.getLogger(__name__)

KINDS = [kind for kind, _ in Service.KIND_CHOICES]

PRICING_FIELDS = (
    'base_price', 'currency', 'discount_percentage', 'discount_amount',
    'discount_valid_until', 'gst', 'service_tax', 'other_charges',
)
DESCRIPTIVE_FIELDS = (
    'kind', 'title', 'short_description', 'description', 'category', 'icon',
    'cta_text', 'features', 'details', 'is_active', 'priority',
)


class ServiceCatalog:
    """Reads and writes bookable services; every write reprices the service."""

    def __init__(self, store=None, cache=None, audit=None, clock=timezone.now):
        self.store = store or DocumentStore()
        self.cache = cache
        self.audit = audit or AuditLog(self.store)
        self.clock = clock

    @classmethod
    def from_settings(cls):
        return cls(cache=CatalogCache(ttl=settings.CATALOG_CACHE_TTL))

    def list_active_services(self, kind):
        if kind not in KINDS:
            raise ValidationError({'kind': f"Kind must be one of {', '.join(KINDS)}"})

        if self.cache is not None:
            cached = self.cache.get(kind)
            if cached is not None:
                return list(cached)

        try:
            services = self.store.query(Service, {'kind': kind})
        except StoreUnavailableError:
            logger.warning('Catalog store unavailable, returning no %s services', kind, exc_info=True)
            return []

        active = [s for s in services if s.is_active]
        active.sort(key=lambda s: s.created_at, reverse=True)
        active.sort(key=lambda s: s.priority)

        if self.cache is not None:
            self.cache.set(kind, active)
        return active

    def get_service(self, service_id):
        service = self.store.get(Service, service_id)
        if service is None:
            raise NotFoundError(f'Service {service_id} not found')
        return service

    def get_bookable_service(self, service_id):
        service = self.get_service(service_id)
        if not service.is_active:
            raise NotFoundError(f'Service {service_id} is not available')
        return service

    def upsert_service(self, data):
        """
        Create a service, or update it when ``data`` carries an ``id``.

        Pricing may be given as flat canonical fields or as a stored
        ``pricing`` document in either representation. Any ``final_price`` in
        ``data`` is dropped and recomputed.
        """
        data = dict(data)
        service_id = data.pop('id', None)
        data.pop('final_price', None)
        data.pop('finalPrice', None)
        pricing_doc = data.pop('pricing', None)

        unknown = set(data) - set(PRICING_FIELDS) - set(DESCRIPTIVE_FIELDS)
        if unknown:
            raise ValidationError({field: 'Unknown field' for field in sorted(unknown)})

        service = self.get_service(service_id) if service_id is not None else None

        pricing_values = service.pricing_input().as_dict() if service else {'base_price': None}
        if pricing_doc is not None:
            pricing_values.update(pricing_from_document(pricing_doc).as_dict())
        pricing_values.update({f: data.pop(f) for f in PRICING_FIELDS if f in data})
        pricing = PricingInput(**pricing_values)
        final_price = compute_final_price(pricing, self.clock())

        self._validate_descriptive(data, creating=service is None)
        values = {**data, **pricing.as_dict(), 'final_price': final_price}

        if service is None:
            service = Service(**values)
            self.store.add(service)
            self._invalidate(service.kind)
            self.audit.record('service_created', f'{service.kind} service: {service.title} (ID: {service.pk})')
        else:
            previous_kind = service.kind
            service = self.store.update(Service, service.pk, **values)
            self._invalidate(previous_kind, service.kind)
            self.audit.record(
                'service_updated',
                f'{service.kind} service: {service.title} (ID: {service.pk}), final price {final_price} {service.currency}',
            )
        return service.pk

    def update_pricing(self, service_id, pricing):
        if isinstance(pricing, PricingInput):
            return self.upsert_service({'id': service_id, **pricing.as_dict()})
        return self.upsert_service({'id': service_id, 'pricing': pricing})

    def deactivate_service(self, service_id):
        service = self.get_service(service_id)
        self.store.update(Service, service.pk, is_active=False)
        self._invalidate(service.kind)
        self.audit.record('service_deactivated', f'{service.kind} service: {service.title} (ID: {service.pk})')

    def seed_sample_services(self):
        seeded = {kind: 0 for kind in KINDS}
        existing = {
            kind: {s.title for s in self.store.query(Service, {'kind': kind, 'is_active': True})}
            for kind in KINDS
        }
        for sample in SAMPLE_SERVICES:
            if sample['title'] in existing[sample['kind']]:
                continue
            self.upsert_service(copy.deepcopy(sample))
            seeded[sample['kind']] += 1

        self.audit.record('services_seeded', ', '.join(f'{n} {kind}' for kind, n in seeded.items()))
        return seeded

    def reseed(self, force=False):
        if not force:
            raise ValidationError({'force': 'Reseeding deactivates every active service; pass force=True to confirm'})
        for kind in KINDS:
            for service in self.store.query(Service, {'kind': kind, 'is_active': True}):
                self.deactivate_service(service.pk)
        return self.seed_sample_services()

    def _validate_descriptive(self, data, creating):
        errors = {}
        if creating or 'kind' in data:
            if data.get('kind') not in KINDS:
                errors['kind'] = f"Kind must be one of {', '.join(KINDS)}"
        if creating or 'title' in data:
            if not str(data.get('title') or '').strip():
                errors['title'] = 'Title is required'
        if 'features' in data and not isinstance(data['features'], list):
            errors['features'] = 'Features must be a list'
        if 'priority' in data and not isinstance(data['priority'], int):
            errors['priority'] = 'Priority must be an integer'
        if errors:
            raise ValidationError(errors)

    def _invalidate(self, *kinds):
        if self.cache is None:
            return
        for kind in set(kinds):
            self.cache.invalidate(kind)
