import unittest
from decimal import Decimal

from crm.constants import AreaType, InsulationType, SurfaceType
from crm.engine.measurements import normalize_measurement
from crm.errors import ValidationError


def raw(**overrides):
    data = {
        'room_name': 'Living Room',
        'surface_type': 'wall',
        'area_type': 'exterior_walls',
        'height': '10',
        'width': '12',
        'insulation_type': 'closed_cell',
    }
    data.update(overrides)
    return data


class NormalizeMeasurementTests(unittest.TestCase):
    def test_square_feet_is_height_times_width(self):
        record = normalize_measurement(raw())
        self.assertEqual(record.square_feet, Decimal('120.00'))
        self.assertEqual(record.surface_type, SurfaceType.WALL)
        self.assertEqual(record.area_type, AreaType.EXTERIOR_WALLS)
        self.assertEqual(record.insulation_type, InsulationType.CLOSED_CELL)

    def test_fractional_dimensions_round_to_cents(self):
        record = normalize_measurement(raw(height='8.25', width=10.5))
        self.assertEqual(record.square_feet, Decimal('86.63'))

    def test_dimensions_are_kept_to_two_decimals(self):
        record = normalize_measurement(raw(height='10.125', width='12.5', thickness_inches='2.005'))
        self.assertEqual(record.height_ft, Decimal('10.13'))
        self.assertEqual(record.width_ft, Decimal('12.50'))
        self.assertEqual(record.thickness_inches, Decimal('2.01'))
        self.assertEqual(record.square_feet, Decimal('126.63'))

    def test_oversized_thickness(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(thickness_inches='1e50'))
        self.assertEqual(ctx.exception.field, 'thickness_inches')

    def test_enum_values_are_case_insensitive(self):
        record = normalize_measurement(raw(surface_type='Ceiling', area_type='CEILING'))
        self.assertEqual(record.surface_type, SurfaceType.CEILING)

    def test_missing_room_name(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(room_name='   '))
        self.assertEqual(ctx.exception.field, 'room_name')

    def test_missing_width(self):
        data = raw()
        del data['width']
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(data)
        self.assertEqual(ctx.exception.field, 'width')

    def test_non_numeric_height(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(height='tall'))
        self.assertEqual(ctx.exception.field, 'height')

    def test_dimension_bounds(self):
        for field, value in (('height', '0.4'), ('height', '31'), ('width', '0.25'), ('width', '100.5')):
            with self.subTest(field=field, value=value):
                with self.assertRaises(ValidationError) as ctx:
                    normalize_measurement(raw(**{field: value}))
                self.assertEqual(ctx.exception.field, field)

    def test_square_footage_bounds(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(height='0.5', width='1'))
        self.assertEqual(ctx.exception.field, 'square_feet')

        record = normalize_measurement(raw(height='30', width='100'))
        self.assertEqual(record.square_feet, Decimal('3000.00'))

    def test_unknown_surface_type(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(surface_type='floor'))
        self.assertEqual(ctx.exception.field, 'surface_type')

    def test_unknown_insulation_type(self):
        with self.assertRaises(ValidationError):
            normalize_measurement(raw(insulation_type='straw'))

    def test_unknown_framing_size(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(framing_size='2x5'))
        self.assertEqual(ctx.exception.field, 'framing_size')

    def test_negative_thickness(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_measurement(raw(thickness_inches='-1'))
        self.assertEqual(ctx.exception.field, 'thickness_inches')

    def test_plaster_condition(self):
        record = normalize_measurement(raw(insulation_type=None, condition='poor'))
        self.assertEqual(record.condition.value, 'poor')
        with self.assertRaises(ValidationError):
            normalize_measurement(raw(condition='crumbling'))


if __name__ == '__main__':
    unittest.main()
