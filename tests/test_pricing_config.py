import copy
import json
import os
import shutil
import tempfile
import unittest
from decimal import Decimal

from crm.constants import DEFAULT_PRICING, BuildingType, InsulationType, ServiceType
from crm.errors import PricingConfigError
from crm.pricing_config import build_pricing_table, default_pricing_table, load_pricing_table, reload_pricing_table


class BuildPricingTableTests(unittest.TestCase):
    def test_defaults(self):
        table = default_pricing_table()
        self.assertEqual(table.insulation_rate(InsulationType.CLOSED_CELL).base_price_per_sqft, Decimal('2.50'))
        self.assertEqual(table.markup_tier(BuildingType.INDUSTRIAL).percentage_for('specialized'), Decimal('30'))
        self.assertEqual(table.minimum_job_value(ServiceType.HVAC), Decimal('2500'))
        self.assertEqual(table.source, 'defaults')

    def test_missing_entry_is_rejected_at_load(self):
        raw = copy.deepcopy(DEFAULT_PRICING)
        del raw['hvac']['furnace']
        with self.assertRaises(PricingConfigError) as ctx:
            build_pricing_table(raw)
        self.assertIn('hvac.furnace', ctx.exception.field)

    def test_non_positive_price(self):
        raw = copy.deepcopy(DEFAULT_PRICING)
        raw['plaster']['wall']['poor'] = '0'
        with self.assertRaises(PricingConfigError):
            build_pricing_table(raw)

    def test_non_numeric_price(self):
        raw = copy.deepcopy(DEFAULT_PRICING)
        raw['insulation']['batt']['base_price_per_sqft'] = 'cheap'
        with self.assertRaises(PricingConfigError):
            build_pricing_table(raw)

    def test_markup_tier_out_of_range(self):
        raw = copy.deepcopy(DEFAULT_PRICING)
        raw['markup_tiers']['commercial']['volume'] = '5'
        with self.assertRaises(PricingConfigError) as ctx:
            build_pricing_table(raw)
        self.assertEqual(ctx.exception.field, 'markup_tiers.commercial.volume')


class LoadPricingTableTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, 'pricing.json')

    def tearDown(self):
        shutil.rmtree(self.tmpdir)
        reload_pricing_table()

    def write(self, overlay, mtime=None):
        with open(self.path, 'w') as f:
            json.dump(overlay, f)
        if mtime is not None:
            os.utime(self.path, (mtime, mtime))

    def test_overlay_is_merged_onto_defaults(self):
        self.write({'insulation': {'batt': {'base_price_per_sqft': '1.25'}}})
        table = reload_pricing_table(self.path)
        self.assertEqual(table.insulation_rate('batt').base_price_per_sqft, Decimal('1.25'))
        self.assertEqual(table.insulation_rate('blown_in').base_price_per_sqft, Decimal('1.10'))
        self.assertEqual(table.source, self.path)

    def test_file_is_reread_when_mtime_changes(self):
        self.write({'hybrid': {'complexity_multiplier': '1.20'}}, mtime=1_700_000_000)
        first = load_pricing_table(self.path)
        self.assertIs(load_pricing_table(self.path), first)

        self.write({'hybrid': {'complexity_multiplier': '1.30'}}, mtime=1_700_000_100)
        second = load_pricing_table(self.path)
        self.assertEqual(second.hybrid.complexity_multiplier, Decimal('1.30'))

    def test_invalid_json(self):
        with open(self.path, 'w') as f:
            f.write('{not json')
        with self.assertRaises(PricingConfigError):
            reload_pricing_table(self.path)

    def test_missing_file(self):
        with self.assertRaises(PricingConfigError):
            load_pricing_table(os.path.join(self.tmpdir, 'absent.json'))


if __name__ == '__main__':
    unittest.main()
