import importlib
import os
import unittest
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

import crm.config
from crm.constants import BusinessRules, CommissionPhase, EstimateStatus, JobStatus, UserRole
from crm.engine.analytics import summarize_commissions
from crm.engine.commissions import (
    DEFAULT_TIMEZONE,
    CompletedJob,
    compute_backend_commission,
    compute_frontend_commission,
)
from crm.engine.estimates import Actor, aggregate_estimate, submit_estimate, transition_estimate
from crm.errors import ConsistencyError
from crm.pricing_config import default_pricing_table
from tests.helpers import flat_line

MANAGER = Actor('manager-1', UserRole.MANAGER)


class CommissionEngineTests(unittest.TestCase):
    def setUp(self):
        self.table = default_pricing_table()

    def approved(self, amount, approved_at=datetime(2025, 3, 15, 16, 0), **kwargs):
        draft = aggregate_estimate([flat_line(amount)], 'residential', table=self.table, job_id='job-1', **kwargs)
        pending = submit_estimate(draft)
        if pending.status is EstimateStatus.APPROVED:
            return pending
        return transition_estimate(pending, EstimateStatus.APPROVED, MANAGER, approved_at)

    def test_frontend_and_backend_on_ten_thousand(self):
        estimate = self.approved('8000')
        self.assertEqual(estimate.total_amount, Decimal('10000.00'))

        frontend = compute_frontend_commission(estimate, 'sales-1')
        self.assertEqual(frontend.phase, CommissionPhase.FRONTEND)
        self.assertEqual(frontend.amount, Decimal('200.00'))
        self.assertEqual(frontend.paid_month, '2025-03')

        job = CompletedJob('job-1', JobStatus.WON, estimate, completion_confirmed=True,
                           completed_at=datetime(2025, 3, 28, 12, 0))
        backend = compute_backend_commission(job, 'sales-1')
        self.assertEqual(backend.amount, Decimal('100.00'))

        summary = summarize_commissions([as_row(frontend), as_row(backend)], month='2025-03')
        self.assertEqual(summary['sales-1'], {
            'frontend': Decimal('200.00'),
            'backend': Decimal('100.00'),
            'total': Decimal('300.00'),
        })

    def test_paid_month_uses_business_timezone(self):
        estimate = self.approved('8000')
        # 02:00 UTC on May 1st is still April 30th in New York
        job = CompletedJob('job-1', JobStatus.WON, estimate, completion_confirmed=True,
                           completed_at=datetime(2025, 5, 1, 2, 0))
        self.assertEqual(compute_backend_commission(job, 'sales-1').paid_month, '2025-04')
        self.assertEqual(compute_backend_commission(job, 'sales-1', 'UTC').paid_month, '2025-05')

    def test_config_and_engine_share_default_timezone(self):
        self.addCleanup(importlib.reload, crm.config)
        with mock.patch.dict(os.environ):
            os.environ.pop('BUSINESS_TIMEZONE', None)
            config = importlib.reload(crm.config)
        self.assertEqual(config.Config.BUSINESS_TIMEZONE, BusinessRules.BUSINESS_TIMEZONE)
        self.assertEqual(DEFAULT_TIMEZONE, BusinessRules.BUSINESS_TIMEZONE)

    def test_frontend_requires_approved_estimate(self):
        draft = aggregate_estimate([flat_line('8000')], 'residential', table=self.table, job_id='job-1')
        with self.assertRaises(ConsistencyError):
            compute_frontend_commission(draft, 'sales-1')

    def test_no_frontend_without_profit(self):
        estimate = self.approved('8000', cost_basis='10000')
        self.assertIsNone(compute_frontend_commission(estimate, 'sales-1'))

    def test_no_frontend_below_minimum_job_value(self):
        small = submit_estimate(aggregate_estimate([flat_line('300')], 'residential', table=self.table,
                                                   job_id='job-1'))
        self.assertEqual(small.total_amount, Decimal('375.00'))
        self.assertIsNone(compute_frontend_commission(small, 'sales-1'))

    def test_lost_job_gets_no_backend_commission(self):
        estimate = self.approved('8000')
        self.assertIsNotNone(compute_frontend_commission(estimate, 'sales-1'))
        lost = CompletedJob('job-1', JobStatus.LOST, estimate, completion_confirmed=True)
        with self.assertRaises(ConsistencyError):
            compute_backend_commission(lost, 'sales-1')

    def test_backend_needs_approved_estimate(self):
        with self.assertRaises(ConsistencyError):
            compute_backend_commission(CompletedJob('job-1', JobStatus.WON, None, True), 'sales-1')

    def test_backend_waits_for_completion(self):
        job = CompletedJob('job-1', JobStatus.WON, self.approved('8000'), completion_confirmed=False)
        self.assertIsNone(compute_backend_commission(job, 'sales-1'))

    def test_backend_independent_of_frontend(self):
        estimate = self.approved('8000', cost_basis='10000')
        self.assertIsNone(compute_frontend_commission(estimate, 'sales-1'))
        job = CompletedJob('job-1', JobStatus.WON, estimate, completion_confirmed=True)
        self.assertEqual(compute_backend_commission(job, 'sales-1').amount, Decimal('100.00'))


def as_row(draft):
    """Stand-in for a stored commission row"""
    return SimpleNamespace(user_id=draft.user_id, phase=draft.phase.value,
                           amount=draft.amount, paid_month=draft.paid_month)


if __name__ == '__main__':
    unittest.main()
