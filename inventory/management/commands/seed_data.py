"""
Management command to seed the database with sample data.

Generates:
- Warehouses with distinct fulfillment priorities
- Inventory items for random product ids across those warehouses, each with
  its initial-stock movement

Product ids are random UUIDs; the product catalog is not consulted.

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
import uuid
from decimal import Decimal

from django.apps import apps
from django.core.management.base import BaseCommand

from inventory.models import InventoryItem, StockAlert, StockMovement, Warehouse
from reservations.models import StockReservation


WAREHOUSES = [
    ('EAST-01', 'East Coast Fulfillment', 'Newark', 'NJ'),
    ('WEST-01', 'West Coast Fulfillment', 'Reno', 'NV'),
    ('CENT-01', 'Central Distribution', 'Columbus', 'OH'),
    ('SOUTH-01', 'Southern Hub', 'Dallas', 'TX'),
    ('NORTH-01', 'Northern Depot', 'Minneapolis', 'MN'),
    ('MTN-01', 'Mountain Depot', 'Denver', 'CO'),
]

PRODUCT_NAMES = [
    'Wireless Headphones', 'Bluetooth Speaker', 'USB-C Cable', 'Power Bank',
    'Smart Watch', 'Laptop Stand', 'Yoga Mat', 'Water Bottle', 'Camping Tent',
    'Garden Hose', 'Wall Clock', 'Board Game', 'Running Shoes', 'Rain Jacket',
]


class Command(BaseCommand):
    help = 'Seed the database with sample warehouses and inventory items'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--warehouses',
            type=int,
            default=4,
            help=f'Number of warehouses to create (default: 4, max: {len(WAREHOUSES)})',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=200,
            help='Number of products to stock (default: 200)',
        )
        parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible data',
        )

    def handle(self, *args, **options):
        if options['seed'] is not None:
            random.seed(options['seed'])

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')
        container = apps.get_app_config('core').container

        warehouses = self._create_warehouses(container.warehouses, options['warehouses'])
        self._create_items(container.store, warehouses, options['products'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all existing data."""
        StockReservation.objects.all().delete()
        StockAlert.objects.all().delete()
        StockMovement.objects.all().delete()
        InventoryItem.objects.all().delete()
        Warehouse.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_warehouses(self, registry, count):
        warehouses = []
        for priority, (code, name, city, state) in enumerate(WAREHOUSES[:count]):
            warehouse = registry.get_by_code(code)
            if warehouse is None:
                warehouse = registry.create(
                    code,
                    name,
                    city=city,
                    state=state,
                    priority=priority,
                    capacity=random.choice([20000, 50000, 100000]),
                    is_default=priority == 0,
                )
                self.stdout.write(f'  Created warehouse: {code}')
            warehouses.append(warehouse)

        self.stdout.write(self.style.SUCCESS(f'Created {len(warehouses)} warehouses'))
        return warehouses

    def _create_items(self, store, warehouses, count):
        self.stdout.write(f'Stocking {count} products...')
        created = 0

        for i in range(count):
            product_id = uuid.uuid4()
            name = random.choice(PRODUCT_NAMES)
            sku = f"{''.join(w[0] for w in name.split()).upper()}-{i + 1:05d}"
            cost_price = Decimal(random.randint(199, 19999)) / 100

            # Most products are stocked in a subset of warehouses
            stocked_at = random.sample(warehouses, k=random.randint(1, len(warehouses)))
            for warehouse in stocked_at:
                store.create(
                    product_id,
                    warehouse,
                    sku,
                    initial_quantity=random.choice([0, 5, 20, 50, 100, 250]),
                    reorder_point=random.choice([5, 10, 20]),
                    max_stock_level=1000,
                    cost_price=cost_price,
                    location=f"A{random.randint(1, 20):02d}-S{random.randint(1, 8)}",
                    user_name='seed_data',
                )
                created += 1

            if (i + 1) % 50 == 0:
                self.stdout.write(f'  Stocked {i + 1} products...')

        self.stdout.write(self.style.SUCCESS(f'Created {created} inventory items'))
