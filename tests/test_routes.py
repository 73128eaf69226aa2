import io
import unittest

import openpyxl

from crm import services
from tests.helpers import AppTestCase


class RouteTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.client = self.app.test_client()
        self.manager = services.create_user('Morgan Manager', 'manager@example.com', 'manager')
        self.salesperson = services.create_user('Sam Sales', 'sam@example.com', 'salesperson')
        self.lead = services.create_lead('Pat Homeowner', 'permit', assigned_to=self.salesperson.id)

    def create_job(self, **data):
        payload = {'job_name': 'Oak Ave', 'lead_id': self.lead.id}
        payload.update(data)
        response = self.client.post('/jobs', json=payload)
        self.assertEqual(response.status_code, 201)
        return response.get_json()['job']

    def add_wall(self, job_id, height='10', width='12'):
        return self.client.post(f'/jobs/{job_id}/measurements', json={
            'room_name': 'Bedroom',
            'surface_type': 'wall',
            'height': height,
            'width': width,
            'insulation_type': 'closed_cell',
        })


class JobRouteTests(RouteTestCase):
    def test_health(self):
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()['success'])

    def test_measurement_lifecycle(self):
        job = self.create_job()
        response = self.add_wall(job['id'])
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body['measurement']['square_feet'], '120.00')
        self.assertEqual(body['total_square_feet'], '120.00')

        response = self.client.delete(f"/jobs/{job['id']}/measurements/{body['measurement']['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['total_square_feet'], '0.00')

    def test_validation_error_shape(self):
        job = self.create_job()
        response = self.add_wall(job['id'], height='0.1')
        self.assertEqual(response.status_code, 400)
        body = response.get_json()
        self.assertFalse(body['success'])
        self.assertEqual(body['code'], 'VALIDATION_ERROR')
        self.assertEqual(body['details']['field'], 'height')

    def test_non_json_body(self):
        response = self.client.post('/jobs', data='job_name=x')
        self.assertEqual(response.status_code, 400)

    def test_unknown_job(self):
        response = self.client.get('/jobs/does-not-exist')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()['code'], 'NOT_FOUND')

    def test_job_detail_lists_children(self):
        job = self.create_job()
        self.add_wall(job['id'])
        self.client.post(f"/jobs/{job['id']}/estimate/generate")
        detail = self.client.get(f"/jobs/{job['id']}").get_json()['job']
        self.assertEqual(len(detail['measurements']), 1)
        self.assertEqual(len(detail['estimates']), 1)
        self.assertEqual(detail['status'], 'in_progress')

    def test_hvac_system_route(self):
        job = self.create_job(service_type='hvac')
        response = self.client.post(f"/jobs/{job['id']}/hvac-systems",
                                    json={'system_type': 'heat_pump', 'tonnage': '2.5'})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()['hvac_system']['system_type'], 'heat_pump')


class EstimateRouteTests(RouteTestCase):
    def generate(self, job_id, **body):
        response = self.client.post(f'/jobs/{job_id}/estimate/generate', json=body or None)
        self.assertEqual(response.status_code, 201)
        return response.get_json()['estimate']

    def test_generate_and_submit_small_estimate(self):
        job = self.create_job()
        self.add_wall(job['id'])
        estimate = self.generate(job['id'])
        self.assertEqual(estimate['total_amount'], '375.00')
        self.assertFalse(estimate['requires_approval'])

        response = self.client.post(f"/estimates/{estimate['id']}/submit")
        body = response.get_json()
        self.assertEqual(body['estimate']['status'], 'approved')
        # 375.00 is below the commissionable minimum
        self.assertIsNone(body['frontend_commission'])

    def test_large_estimate_approval_flow(self):
        job = self.create_job()
        for _ in range(2):
            self.add_wall(job['id'], '10', '100')
        estimate = self.generate(job['id'], markup_percentage='25')
        self.assertEqual(estimate['total_amount'], '6250.00')
        self.assertTrue(estimate['requires_approval'])
        self.assertIsNotNone(estimate['approval_message'])

        submitted = self.client.post(f"/estimates/{estimate['id']}/submit").get_json()
        self.assertEqual(submitted['estimate']['status'], 'pending_approval')

        denied = self.client.post(f"/estimates/{estimate['id']}/approve", json={'actor_id': self.salesperson.id})
        self.assertEqual(denied.status_code, 403)

        approved = self.client.post(f"/estimates/{estimate['id']}/approve", json={'actor_id': self.manager.id})
        self.assertEqual(approved.status_code, 200)
        body = approved.get_json()
        self.assertEqual(body['frontend_commission']['amount'], '125.00')

        again = self.client.post(f"/estimates/{estimate['id']}/reject", json={'actor_id': self.manager.id})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()['details']['current_status'], 'approved')

        completed = self.client.post(f"/jobs/{job['id']}/complete").get_json()
        self.assertEqual(completed['backend_commission']['amount'], '62.50')

    def test_send_then_customer_rejects(self):
        job = self.create_job()
        self.add_wall(job['id'])
        estimate = self.generate(job['id'])
        self.assertEqual(self.client.post(f"/estimates/{estimate['id']}/send").status_code, 200)
        body = self.client.post(f"/estimates/{estimate['id']}/reject").get_json()
        self.assertEqual(body['estimate']['status'], 'rejected')

    def test_manager_price_override(self):
        job = self.create_job()
        measurement = self.add_wall(job['id']).get_json()['measurement']
        estimate = self.generate(job['id'])

        response = self.client.patch(f"/estimates/{estimate['id']}/items", json={
            'actor_id': self.manager.id, 'price_overrides': {measurement['id']: 3},
        })
        self.assertEqual(response.status_code, 200)
        body = response.get_json()['estimate']
        self.assertEqual(body['id'], estimate['id'])
        self.assertEqual(body['subtotal'], '360.00')

        denied = self.client.patch(f"/estimates/{estimate['id']}/items", json={
            'actor_id': self.salesperson.id, 'price_overrides': {measurement['id']: 4},
        })
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.get_json()['code'], 'AUTHORIZATION_ERROR')

    def test_complete_requires_won_job(self):
        job = self.create_job()
        response = self.client.post(f"/jobs/{job['id']}/complete")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()['code'], 'CONSISTENCY_ERROR')

    def test_mark_lost(self):
        job = self.create_job()
        body = self.client.post(f"/jobs/{job['id']}/lost").get_json()
        self.assertEqual(body['job']['status'], 'lost')

    def test_estimate_pdf(self):
        job = self.create_job()
        self.add_wall(job['id'])
        estimate = self.generate(job['id'])
        response = self.client.get(f"/estimates/{estimate['id']}/pdf")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['Content-Type'], 'application/pdf')
        self.assertTrue(response.data.startswith(b'%PDF'))
        self.assertIn(estimate['estimate_number'], response.headers['Content-Disposition'])


class AnalyticsRouteTests(RouteTestCase):
    def setUp(self):
        super().setUp()
        job = self.create_job()
        for _ in range(4):
            self.add_wall(job['id'], '10', '100')
        estimate = self.client.post(f"/jobs/{job['id']}/estimate/generate").get_json()['estimate']
        self.client.post(f"/estimates/{estimate['id']}/submit")
        self.client.post(f"/estimates/{estimate['id']}/approve", json={'actor_id': self.manager.id})
        self.client.post(f"/jobs/{job['id']}/complete")

    def test_commission_summary(self):
        body = self.client.get('/analytics/commission').get_json()
        self.assertEqual(body['commissions'][self.salesperson.id], {
            'frontend': '250.00', 'backend': '125.00', 'total': '375.00',
        })

    def test_commission_summary_bad_month(self):
        response = self.client.get('/analytics/commission?month=soon')
        self.assertEqual(response.status_code, 400)

    def test_commission_export(self):
        response = self.client.get('/analytics/commission/export')
        self.assertEqual(response.status_code, 200)
        workbook = openpyxl.load_workbook(io.BytesIO(response.data))
        sheet = workbook.worksheets[0]
        self.assertEqual(sheet.cell(row=1, column=1).value, 'MONTH')
        amounts = sorted(sheet.cell(row=row, column=8).value for row in (2, 3))
        self.assertEqual(amounts, [125.0, 250.0])
        self.assertEqual(sheet.cell(row=4, column=8).value, 375.0)
        self.assertIn('Summary', workbook.sheetnames)

    def test_revenue_by_source(self):
        revenue = self.client.get('/analytics/revenue-by-source').get_json()['revenue']
        self.assertEqual(revenue['permit'], '12500.00')
        self.assertEqual(revenue['referral'], '0.00')

    def test_revenue_by_month(self):
        revenue = self.client.get('/analytics/revenue-by-month').get_json()['revenue']
        self.assertEqual(list(revenue.values()), ['12500.00'])

    def test_leaderboard(self):
        body = self.client.get('/analytics/leaderboard').get_json()
        self.assertTrue(body['success'])
        self.assertEqual(len(body['leaderboard']), 1)
        top = body['leaderboard'][0]
        self.assertEqual(top['user_id'], self.salesperson.id)
        self.assertEqual(top['rank'], 1)
        self.assertEqual(top['revenue'], '12500.00')
        self.assertEqual(top['commission'], '375.00')
        self.assertEqual(top['score'], '22.50')

    def test_leaderboard_bad_month(self):
        self.assertEqual(self.client.get('/analytics/leaderboard?month=soon').status_code, 400)


class PricingRouteTests(RouteTestCase):
    def test_current_pricing(self):
        body = self.client.get('/pricing').get_json()
        self.assertEqual(body['pricing']['insulation']['closed_cell']['base_price_per_sqft'], '2.50')
        self.assertEqual(body['pricing']['markup_tiers']['residential']['premium'], '35')

    def test_reload(self):
        response = self.client.post('/pricing/reload')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['source'], 'defaults')


if __name__ == '__main__':
    unittest.main()
