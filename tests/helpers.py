import unittest
from decimal import Decimal

from crm import create_app, db
from crm.engine.pricing import LineItem
from crm.constants import ServiceType


def flat_line(amount, description='Flat fee'):
    """One-unit line item worth ``amount``"""
    return LineItem(
        description=description,
        quantity=Decimal('1'),
        unit='EA',
        unit_price=Decimal(str(amount)),
        category=ServiceType.INSULATION,
    )


class AppTestCase(unittest.TestCase):
    """Fresh in-memory database per test"""

    def setUp(self):
        self.app = create_app('testing')
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()
