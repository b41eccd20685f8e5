import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.core.cache.backends.locmem import LocMemCache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, Client

from audit.models import AuditLogEntry
from core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from core.store import DocumentStore
from .cache import CatalogCache
from .models import Service
from .pricing import (
    PricingInput, compute_final_price, discount_is_active, discount_savings,
    format_price, pricing_from_document,
)
from .services import ServiceCatalog

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=dt_timezone.utc)


def make_cache():
    return CatalogCache(LocMemCache(f'catalog-tests-{uuid.uuid4()}', {}), ttl=60)


class ComputeFinalPriceTest(SimpleTestCase):
    def test_gst_only(self):
        pricing = PricingInput(base_price=6000, gst=18)
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('7080.00'))

    def test_percentage_discount_then_gst(self):
        pricing = PricingInput(
            base_price=1000,
            discount_percentage=20,
            discount_valid_until=NOW + timedelta(days=7),
            gst=18,
        )
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('944.00'))

    def test_same_inputs_give_same_result(self):
        pricing = PricingInput(base_price='1499.99', discount_percentage='12.5', gst=18, service_tax=2)
        self.assertEqual(compute_final_price(pricing, NOW), compute_final_price(pricing, NOW))

    def test_expired_discount_is_ignored(self):
        expired = PricingInput(
            base_price=1000, discount_percentage=20,
            discount_valid_until=NOW - timedelta(seconds=1), gst=18,
        )
        undiscounted = PricingInput(base_price=1000, gst=18)
        self.assertEqual(compute_final_price(expired, NOW), compute_final_price(undiscounted, NOW))

    def test_discount_ending_exactly_now_is_expired(self):
        pricing = PricingInput(base_price=1000, discount_percentage=20, discount_valid_until=NOW)
        self.assertFalse(discount_is_active(pricing, NOW))
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('1000.00'))

    def test_discount_without_end_date_applies(self):
        pricing = PricingInput(base_price=500, discount_amount=100)
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('400.00'))

    def test_fixed_discount_larger_than_base_floors_at_zero_before_taxes(self):
        pricing = PricingInput(base_price=300, discount_amount=500, gst=18, other_charges=25)
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('25.00'))

    def test_taxes_apply_to_discounted_amount_without_compounding(self):
        pricing = PricingInput(base_price=1000, discount_percentage=10, gst=18, service_tax=5, other_charges=50)
        # 900 + 162 + 45 + 50
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('1157.00'))

    def test_rounds_half_up(self):
        pricing = PricingInput(base_price='0.125')
        self.assertEqual(compute_final_price(pricing, NOW), Decimal('0.13'))

    def test_naive_now_is_treated_as_utc(self):
        pricing = PricingInput(base_price=100, discount_percentage=50, discount_valid_until=NOW)
        self.assertEqual(compute_final_price(pricing, datetime(2026, 2, 28)), Decimal('50.00'))

    def test_negative_base_price_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            compute_final_price(PricingInput(base_price=-1), NOW)
        self.assertIn('base_price', ctx.exception.errors)

    def test_discount_percentage_out_of_range_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            compute_final_price(PricingInput(base_price=100, discount_percentage=120), NOW)
        self.assertIn('discount_percentage', ctx.exception.errors)

    def test_negative_discount_amount_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            compute_final_price(PricingInput(base_price=100, discount_amount=-5), NOW)
        self.assertIn('discount_amount', ctx.exception.errors)

    def test_percentage_and_amount_together_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            compute_final_price(PricingInput(base_price=100, discount_percentage=10, discount_amount=5), NOW)
        self.assertIn('discount', ctx.exception.errors)

    def test_expired_invalid_discount_still_rejected(self):
        pricing = PricingInput(base_price=100, discount_percentage=150, discount_valid_until=NOW - timedelta(days=1))
        with self.assertRaises(ValidationError):
            compute_final_price(pricing, NOW)

    def test_non_numeric_input_rejected(self):
        with self.assertRaises(ValidationError):
            PricingInput(base_price='abc')


class PricingDocumentTest(SimpleTestCase):
    def test_enhanced_and_legacy_shapes_price_the_same(self):
        enhanced = {
            'basePrice': 1000,
            'currency': 'INR',
            'isDiscounted': True,
            'discountPrice': 800,
            'discountValidUntil': '2026-04-01T00:00:00Z',
            'taxes': {'gst': 18},
        }
        legacy = {
            'basePrice': 1000,
            'currency': 'INR',
            'discountPercentage': 20,
            'discountValidUntil': '2026-04-01T00:00:00Z',
            'taxes': {'gst': 18},
            'finalPrice': 1,
        }
        self.assertEqual(compute_final_price(pricing_from_document(enhanced), NOW), Decimal('944.00'))
        self.assertEqual(compute_final_price(pricing_from_document(legacy), NOW), Decimal('944.00'))

    def test_stale_final_price_is_ignored(self):
        doc = {'basePrice': 6000, 'taxes': {'gst': 18}, 'finalPrice': 6000}
        self.assertEqual(compute_final_price(pricing_from_document(doc), NOW), Decimal('7080.00'))

    def test_enhanced_shape_without_active_flag_has_no_discount(self):
        doc = {'basePrice': 1000, 'isDiscounted': False, 'discountPrice': 800, 'taxes': {}}
        pricing = pricing_from_document(doc)
        self.assertIsNone(pricing.discount_amount)

    def test_date_only_expiry_is_parsed(self):
        pricing = pricing_from_document({'basePrice': 100, 'discountPercentage': 10, 'discountValidUntil': '2026-01-01'})
        self.assertEqual(pricing.discount_valid_until, datetime(2026, 1, 1, tzinfo=dt_timezone.utc))

    def test_missing_pricing_rejected(self):
        with self.assertRaises(ValidationError):
            pricing_from_document(None)

    def test_discount_savings(self):
        pricing = PricingInput(base_price=1000, discount_percentage=20)
        self.assertEqual(discount_savings(pricing, NOW), Decimal('200.00'))


class FormatPriceTest(SimpleTestCase):
    def test_indian_grouping(self):
        self.assertEqual(format_price(Decimal('7080')), '₹7,080')
        self.assertEqual(format_price(Decimal('125000.50')), '₹1,25,000.50')

    def test_zero_is_free(self):
        self.assertEqual(format_price(0), 'Free')

    def test_usd(self):
        self.assertEqual(format_price(Decimal('1234.5'), 'USD'), '$1,234.50')


class ServiceCatalogTest(TestCase):
    def setUp(self):
        self.catalog = ServiceCatalog(cache=make_cache(), clock=lambda: NOW)

    def create(self, **overrides):
        data = {'kind': 'training', 'title': 'LMV Training', 'base_price': 6000, 'gst': 18}
        data.update(overrides)
        return self.catalog.upsert_service(data)

    def test_upsert_computes_final_price(self):
        service_id = self.create()
        service = Service.objects.get(pk=service_id)
        self.assertEqual(service.final_price, Decimal('7080.00'))

    def test_caller_supplied_final_price_is_discarded(self):
        service_id = self.create(final_price=1)
        self.assertEqual(Service.objects.get(pk=service_id).final_price, Decimal('7080.00'))

    def test_update_reprices(self):
        service_id = self.create()
        self.catalog.upsert_service({'id': service_id, 'discount_percentage': 20, 'base_price': 1000})
        self.assertEqual(Service.objects.get(pk=service_id).final_price, Decimal('944.00'))

    def test_update_pricing_with_legacy_document(self):
        service_id = self.create()
        self.catalog.update_pricing(service_id, {'basePrice': 1000, 'discountPercentage': 20, 'taxes': {'gst': 18}})
        service = Service.objects.get(pk=service_id)
        self.assertEqual(service.discount_percentage, Decimal('20.00'))
        self.assertEqual(service.final_price, Decimal('944.00'))

    def test_invalid_pricing_is_not_written(self):
        service_id = self.create()
        with self.assertRaises(ValidationError):
            self.catalog.upsert_service({'id': service_id, 'discount_percentage': 101})
        self.assertIsNone(Service.objects.get(pk=service_id).discount_percentage)

    def test_create_requires_kind_and_title(self):
        with self.assertRaises(ValidationError) as ctx:
            self.catalog.upsert_service({'base_price': 100})
        self.assertEqual(set(ctx.exception.errors), {'kind', 'title'})

    def test_unknown_fields_rejected(self):
        with self.assertRaises(ValidationError):
            self.create(colour='red')

    def test_list_orders_by_priority_then_newest(self):
        first = self.create(title='Older', priority=1)
        second = self.create(title='Newer', priority=1)
        self.create(title='Top', priority=0)
        Service.objects.filter(pk=first).update(created_at=NOW - timedelta(days=2))
        Service.objects.filter(pk=second).update(created_at=NOW - timedelta(days=1))
        self.catalog.cache.clear()

        titles = [s.title for s in self.catalog.list_active_services('training')]
        self.assertEqual(titles, ['Top', 'Newer', 'Older'])

    def test_list_excludes_inactive_and_other_kinds(self):
        self.create(title='Active')
        self.create(title='Hidden', is_active=False)
        self.create(title='Online', kind='online')

        titles = [s.title for s in self.catalog.list_active_services('training')]
        self.assertEqual(titles, ['Active'])

    def test_list_degrades_to_empty_on_store_outage(self):
        store = MagicMock()
        store.query.side_effect = StoreUnavailableError('database not initialised')
        catalog = ServiceCatalog(store=store, cache=make_cache(), audit=MagicMock())

        with self.assertLogs('catalog.services', level='WARNING'):
            self.assertEqual(catalog.list_active_services('online'), [])

    def test_writes_raise_on_store_outage(self):
        store = MagicMock()
        store.add.side_effect = StoreUnavailableError('database not initialised')
        catalog = ServiceCatalog(store=store, audit=MagicMock(), clock=lambda: NOW)

        with self.assertRaises(StoreUnavailableError):
            catalog.upsert_service({'kind': 'online', 'title': 'DL Printout', 'base_price': 450})

    def test_listing_is_cached_and_invalidated_on_write(self):
        self.create(title='First')
        self.assertEqual(len(self.catalog.list_active_services('training')), 1)

        Service.objects.create(kind='training', title='Direct insert', base_price=10)
        self.assertEqual(len(self.catalog.list_active_services('training')), 1)

        self.create(title='Second')
        self.assertEqual(len(self.catalog.list_active_services('training')), 3)

    def test_deactivate_keeps_the_row(self):
        service_id = self.create()
        self.catalog.deactivate_service(service_id)

        service = Service.objects.get(pk=service_id)
        self.assertFalse(service.is_active)
        self.assertEqual(self.catalog.list_active_services('training'), [])
        self.assertTrue(AuditLogEntry.objects.filter(action='service_deactivated', target__contains='LMV Training').exists())

    def test_get_service_not_found(self):
        with self.assertRaises(NotFoundError):
            self.catalog.get_service(9999)

    def test_inactive_service_is_not_bookable(self):
        service_id = self.create(is_active=False)
        self.assertEqual(self.catalog.get_service(service_id).pk, service_id)
        with self.assertRaises(NotFoundError):
            self.catalog.get_bookable_service(service_id)

    def test_invalid_kind_rejected(self):
        with self.assertRaises(ValidationError):
            self.catalog.list_active_services('flying')


class SeedServicesTest(TestCase):
    def test_seeding_skips_existing_titles(self):
        catalog = ServiceCatalog(clock=lambda: NOW)
        first = catalog.seed_sample_services()
        second = catalog.seed_sample_services()

        self.assertEqual(first, {'training': 4, 'online': 3})
        self.assertEqual(second, {'training': 0, 'online': 0})
        lmv = Service.objects.get(title='LMV Training (Basic)')
        self.assertEqual(lmv.final_price, Decimal('7080.00'))

    def test_reseed_requires_force(self):
        with self.assertRaises(ValidationError):
            ServiceCatalog().reseed()

    def test_reseed_deactivates_and_recreates(self):
        catalog = ServiceCatalog(clock=lambda: NOW)
        catalog.seed_sample_services()
        catalog.reseed(force=True)

        self.assertEqual(Service.objects.filter(is_active=False).count(), 7)
        self.assertEqual(Service.objects.filter(is_active=True).count(), 7)

    def test_management_command(self):
        call_command('seed_services', stdout=MagicMock())
        self.assertEqual(Service.objects.count(), 7)


class ServiceApiTest(TestCase):
    def setUp(self):
        self.client = Client()
        catalog = ServiceCatalog(clock=lambda: NOW)
        self.service_id = catalog.upsert_service(
            {'kind': 'training', 'title': 'LMV Training', 'base_price': 6000, 'gst': 18}
        )
        self.inactive_id = catalog.upsert_service(
            {'kind': 'training', 'title': 'Retired course', 'base_price': 100, 'is_active': False}
        )

    def test_list_services(self):
        response = self.client.get('/api/services/', {'kind': 'training'})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([s['title'] for s in data['services']], ['LMV Training'])
        self.assertEqual(data['services'][0]['price'], '7080.00')
        self.assertEqual(data['services'][0]['price_display'], '₹7,080')

    def test_list_services_rejects_unknown_kind(self):
        response = self.client.get('/api/services/', {'kind': 'flying'})
        self.assertEqual(response.status_code, 400)

    def test_inactive_service_is_unavailable(self):
        response = self.client.get(f'/api/services/{self.inactive_id}/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'This service is currently unavailable')

    @patch.object(DocumentStore, 'get', side_effect=StoreUnavailableError('db down'))
    def test_store_outage_hides_internal_details(self, mock_get):
        with self.assertLogs('catalog.views', level='ERROR'):
            response = self.client.get(f'/api/services/{self.service_id}/')
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json(), {'error': 'Something went wrong. Please try again.'})
