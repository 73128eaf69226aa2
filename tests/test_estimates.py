import unittest
from datetime import datetime
from decimal import Decimal

from crm.constants import BuildingType, EstimateStatus, UserRole
from crm.engine.estimates import (
    Actor,
    aggregate_estimate,
    compute_total,
    revise_estimate,
    submit_estimate,
    transition_estimate,
)
from crm.errors import AuthorizationError, InvalidTransitionError, ValidationError
from crm.pricing_config import default_pricing_table
from tests.helpers import flat_line

MANAGER = Actor('manager-1', UserRole.MANAGER)
SALESPERSON = Actor('sales-1', UserRole.SALESPERSON)


class AggregateEstimateTests(unittest.TestCase):
    def setUp(self):
        self.table = default_pricing_table()

    def estimate(self, amount, building_type='residential', **kwargs):
        return aggregate_estimate([flat_line(amount)], building_type, table=self.table, job_id='job-1', **kwargs)

    def test_threshold_total_requires_approval(self):
        estimate = self.estimate('4000')
        self.assertEqual(estimate.markup_percentage, Decimal('25'))
        self.assertEqual(estimate.total_amount, Decimal('5000.00'))
        self.assertTrue(estimate.requires_approval)
        self.assertIsNotNone(estimate.approval_message)
        self.assertEqual(estimate.status, EstimateStatus.DRAFT)

    def test_small_total_does_not_require_approval(self):
        estimate = self.estimate('3000')
        self.assertEqual(estimate.total_amount, Decimal('3750.00'))
        self.assertFalse(estimate.requires_approval)
        self.assertIsNone(estimate.approval_message)

    def test_subtotal_sums_line_totals(self):
        estimate = aggregate_estimate([flat_line('100.10'), flat_line('200.25')], 'commercial', table=self.table)
        self.assertEqual(estimate.subtotal, Decimal('300.35'))
        self.assertEqual(estimate.total_amount, Decimal('360.42'))

    def test_total_rounds_half_up(self):
        self.assertEqual(compute_total(Decimal('0.10'), Decimal('25')), Decimal('0.13'))

    def test_alternate_tier_flag(self):
        self.assertEqual(self.estimate('1000', tier_flag='premium').markup_percentage, Decimal('35'))
        self.assertEqual(self.estimate('1000', 'commercial', tier_flag='volume').markup_percentage, Decimal('15'))
        with self.assertRaises(ValidationError) as ctx:
            self.estimate('1000', 'commercial', tier_flag='premium')
        self.assertEqual(ctx.exception.field, 'tier_flag')

    def test_unknown_building_type(self):
        with self.assertRaises(ValidationError):
            self.estimate('1000', 'castle')

    def test_markup_override_bounds(self):
        self.assertEqual(self.estimate('1000', markup_percentage='10').total_amount, Decimal('1100.00'))
        for markup in ('9.99', '50.01'):
            with self.subTest(markup=markup):
                with self.assertRaises(ValidationError):
                    self.estimate('1000', markup_percentage=markup)

    def test_total_is_monotonic_in_markup(self):
        totals = [self.estimate('1234.56', markup_percentage=m).total_amount for m in range(10, 51)]
        self.assertEqual(totals, sorted(totals))

    def test_minimum_job_value_flag_and_block(self):
        flagged = self.estimate('100', service_type='insulation')
        self.assertTrue(flagged.below_minimum)
        self.assertEqual(flagged.minimum_job_value, Decimal('800'))

        with self.assertRaises(ValidationError):
            self.estimate('100', service_type='insulation', minimum_policy='block')

        self.assertFalse(self.estimate('900', service_type='insulation').below_minimum)

    def test_profit_uses_cost_basis(self):
        self.assertEqual(self.estimate('1000').profit, Decimal('250.00'))
        self.assertEqual(self.estimate('1000', cost_basis='1250').profit, Decimal('0.00'))


class EstimateStateMachineTests(unittest.TestCase):
    def setUp(self):
        self.table = default_pricing_table()
        self.now = datetime(2025, 3, 15, 14, 0)

    def estimate(self, amount):
        return aggregate_estimate([flat_line(amount)], BuildingType.RESIDENTIAL, table=self.table, job_id='job-1')

    def test_submit_auto_approves_below_threshold(self):
        approved = submit_estimate(self.estimate('3000'), now=self.now)
        self.assertEqual(approved.status, EstimateStatus.APPROVED)
        self.assertEqual(approved.approved_by, 'system')
        self.assertEqual(approved.approved_at, self.now)

    def test_submit_queues_large_estimates(self):
        pending = submit_estimate(self.estimate('4000'), SALESPERSON)
        self.assertEqual(pending.status, EstimateStatus.PENDING_APPROVAL)
        self.assertIsNone(pending.approved_by)

    def test_input_estimate_is_not_modified(self):
        draft = self.estimate('3000')
        submit_estimate(draft)
        self.assertEqual(draft.status, EstimateStatus.DRAFT)

    def test_draft_cannot_skip_required_approval(self):
        with self.assertRaises(InvalidTransitionError):
            transition_estimate(self.estimate('4000'), EstimateStatus.APPROVED, MANAGER)

    def test_pending_needs_an_authorized_actor(self):
        pending = transition_estimate(self.estimate('4000'), EstimateStatus.PENDING_APPROVAL)

        with self.assertRaises(ValidationError):
            transition_estimate(pending, EstimateStatus.APPROVED)
        with self.assertRaises(AuthorizationError):
            transition_estimate(pending, EstimateStatus.APPROVED, SALESPERSON)

        approved = transition_estimate(pending, EstimateStatus.APPROVED, MANAGER, self.now)
        self.assertEqual(approved.approved_by, 'manager-1')
        self.assertIsNone(approved.approval_message)

    def test_salesperson_may_approve_small_pending_estimate(self):
        pending = transition_estimate(self.estimate('1000'), EstimateStatus.PENDING_APPROVAL)
        approved = transition_estimate(pending, EstimateStatus.APPROVED, SALESPERSON)
        self.assertEqual(approved.status, EstimateStatus.APPROVED)

    def test_sent_estimate_customer_response(self):
        sent = transition_estimate(self.estimate('1000'), EstimateStatus.SENT)
        self.assertEqual(transition_estimate(sent, EstimateStatus.REJECTED).status, EstimateStatus.REJECTED)

    def test_draft_needing_approval_cannot_be_sent(self):
        draft = self.estimate('4000')
        with self.assertRaises(InvalidTransitionError) as ctx:
            transition_estimate(draft, EstimateStatus.SENT, MANAGER)
        self.assertEqual(ctx.exception.current, 'draft')
        self.assertEqual(ctx.exception.attempted, 'sent')

        # The approval route stays open
        pending = transition_estimate(draft, EstimateStatus.PENDING_APPROVAL)
        approved = transition_estimate(pending, EstimateStatus.APPROVED, MANAGER)
        self.assertEqual(approved.status, EstimateStatus.APPROVED)

    def test_terminal_states(self):
        approved = submit_estimate(self.estimate('1000'))
        rejected = transition_estimate(transition_estimate(self.estimate('1000'), EstimateStatus.SENT),
                                       EstimateStatus.REJECTED)
        for closed in (approved, rejected):
            for target in EstimateStatus:
                with self.subTest(current=closed.status, target=target):
                    with self.assertRaises(InvalidTransitionError) as ctx:
                        transition_estimate(closed, target, MANAGER)
                    self.assertEqual(ctx.exception.current, closed.status.value)
                    self.assertEqual(ctx.exception.attempted, target.value)

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            transition_estimate(self.estimate('1000'), 'archived')

    def test_revise_only_while_open(self):
        draft = self.estimate('1000')
        revised = revise_estimate(draft, line_items=[flat_line('2000')])
        self.assertEqual(revised.total_amount, Decimal('2500.00'))

        with self.assertRaises(InvalidTransitionError):
            revise_estimate(submit_estimate(draft), markup_percentage='30')


if __name__ == '__main__':
    unittest.main()
