import logging

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .exceptions import DuplicateKeyError, NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)


class DocumentStore:
    """
    Thin document-style access to the database.

    Each model plays the role of a collection. Queries only accept plain
    equality filters and never order results; callers sort in memory so
    nothing depends on composite indexes being present.
    """

    def __init__(self, using=None):
        self.using = using or getattr(settings, 'DOCUMENT_STORE_ALIAS', 'default')

    def _manager(self, model):
        return model.objects.using(self.using)

    def get(self, model, pk):
        try:
            return self._manager(model).filter(pk=pk).first()
        except (ValueError, TypeError):
            return None
        except DatabaseError as e:
            raise StoreUnavailableError(f'Could not read {model.__name__} {pk}') from e

    def query(self, model, filters=None, limit=None):
        filters = filters or {}
        for key in filters:
            if '__' in key:
                raise ValueError(f'Only equality filters are supported, got {key!r}')
        try:
            qs = self._manager(model).filter(**filters).order_by()
            if limit:
                qs = qs[:limit]
            return list(qs)
        except DatabaseError as e:
            raise StoreUnavailableError(f'Could not query {model.__name__}') from e

    def exists(self, model, filters):
        try:
            return self._manager(model).filter(**filters).exists()
        except DatabaseError as e:
            raise StoreUnavailableError(f'Could not query {model.__name__}') from e

    def add(self, instance):
        try:
            with transaction.atomic(using=self.using):
                instance.save(using=self.using, force_insert=True)
        except IntegrityError as e:
            raise DuplicateKeyError(str(e)) from e
        except DatabaseError as e:
            raise StoreUnavailableError(f'Could not write {type(instance).__name__}') from e
        return instance.pk

    def update(self, model, pk, **fields):
        if any(f.name == 'updated_at' for f in model._meta.get_fields()):
            fields.setdefault('updated_at', timezone.now())
        try:
            updated = self._manager(model).filter(pk=pk).update(**fields)
        except DatabaseError as e:
            raise StoreUnavailableError(f'Could not update {model.__name__} {pk}') from e
        if not updated:
            raise NotFoundError(f'{model.__name__} {pk} not found')
        return self.get(model, pk)

    def add_unique(self, instance, unique_filters):
        """Insert ``instance`` unless a row matching ``unique_filters`` already exists."""
        if self.exists(type(instance), unique_filters):
            raise DuplicateKeyError(f'{type(instance).__name__} matching {unique_filters} already exists')
        return self.add(instance)
