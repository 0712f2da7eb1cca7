import unittest
from unittest import mock
from sqlalchemy.exc import OperationalError
from stokvel.errors import AuthorizationError, ConflictError, LedgerError, ValidationError
from stokvel.extensions import db
from stokvel.models import (
    Contribution, ContributionStatus, Membership, Notification, NotificationType
)
from stokvel.services import contribution_service, payment_service
from tests.helpers import AppTestCase


class ContributionTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.make_admin()
        self.member = self.make_user()
        self.group = self.make_group(target_amount=1000.0)
        self.membership = self.make_membership(self.member, self.group)

    def notifications_for(self, user, notification_type=None):
        query = Notification.query.filter_by(user_id=user.id)
        if notification_type:
            query = query.filter_by(type=notification_type)
        return query.all()


class TestAddContribution(ContributionTestCase):
    def test_creates_pending_without_touching_savings(self):
        contribution = contribution_service.add_contribution(
            self.membership.id, 200, 'card', self.member.id
        )

        self.assertEqual(contribution.status, ContributionStatus.PENDING.value)
        self.assertTrue(contribution.reference.startswith('TRX-'))
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 0.0)

    def test_notifies_admins_and_member(self):
        contribution_service.add_contribution(self.membership.id, 200, 'bank', self.member.id)

        self.assertEqual(len(self.notifications_for(self.admin, NotificationType.CONTRIBUTION.value)), 1)
        self.assertEqual(len(self.notifications_for(self.member, NotificationType.CONTRIBUTION.value)), 1)

    def test_payment_method_defaults_to_card(self):
        contribution = contribution_service.add_contribution(
            self.membership.id, 100, None, self.member.id
        )
        self.assertEqual(contribution.payment_method, 'card')

    def test_below_minimum_rejected(self):
        with self.assertRaises(ValidationError):
            contribution_service.add_contribution(self.membership.id, 40, 'card', self.member.id)
        self.assertEqual(Contribution.query.count(), 0)

    def test_above_remaining_target_rejected(self):
        self.make_pending_contribution(self.membership, 100)
        with self.assertRaises(ValidationError):
            contribution_service.add_contribution(self.membership.id, 1200, 'card', self.member.id)

    def test_non_finite_amount_rejected(self):
        for amount in (float('nan'), float('inf')):
            with self.assertRaises(ValidationError) as ctx:
                contribution_service.add_contribution(
                    self.membership.id, amount, 'card', self.member.id
                )
            self.assertEqual(ctx.exception.errors, ["Amount must be a number"])
        self.assertEqual(Contribution.query.count(), 0)

    def test_all_violations_reported(self):
        with self.assertRaises(ValidationError) as ctx:
            contribution_service.add_contribution(self.membership.id, 10, 'crypto', self.member.id)
        self.assertEqual(len(ctx.exception.errors), 2)

    def test_store_failure_hides_sql(self):
        failure = OperationalError('INSERT INTO contributions ...', {}, Exception('disk I/O error'))
        with mock.patch.object(db.session, 'commit', side_effect=failure):
            with self.assertRaises(LedgerError) as ctx:
                contribution_service.add_contribution(
                    self.membership.id, 200, 'card', self.member.id
                )

        self.assertEqual(ctx.exception.message, 'Failed to add contribution')
        self.assertEqual(ctx.exception.to_dict()['errors'], ['Failed to add contribution'])
        self.assertEqual(Contribution.query.count(), 0)

    def test_other_member_cannot_contribute(self):
        stranger = self.make_user(name='Lerato Dube')
        with self.assertRaises(AuthorizationError):
            contribution_service.add_contribution(self.membership.id, 100, 'card', stranger.id)


class TestConfirmContribution(ContributionTestCase):
    def test_confirm_credits_savings(self):
        contribution = contribution_service.add_contribution(
            self.membership.id, 250, 'card', self.member.id
        )
        confirmed = contribution_service.confirm_contribution(contribution.id, self.admin.id)

        self.assertEqual(confirmed.status, ContributionStatus.CONFIRMED.value)
        self.assertEqual(confirmed.confirmed_by, self.admin.id)
        self.assertIsNotNone(confirmed.confirmed_at)
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 250.0)

    def test_confirm_notifies_contributor(self):
        contribution = self.make_pending_contribution(self.membership, 100)
        contribution_service.confirm_contribution(contribution.id, self.admin.id)

        messages = [n.message for n in self.notifications_for(self.member)]
        self.assertIn("Your contribution of R100.00 has been confirmed", messages)

    def test_second_confirm_conflicts(self):
        contribution = self.make_pending_contribution(self.membership, 100)
        contribution_service.confirm_contribution(contribution.id, self.admin.id)

        with self.assertRaises(ConflictError):
            contribution_service.confirm_contribution(contribution.id, self.admin.id)
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 100.0)

    def test_member_cannot_confirm(self):
        contribution = self.make_pending_contribution(self.membership, 100)
        with self.assertRaises(AuthorizationError):
            contribution_service.confirm_contribution(contribution.id, self.member.id)

        self.assertEqual(
            self.reload(Contribution, contribution.id).status, ContributionStatus.PENDING.value
        )

    def test_rejected_contribution_cannot_be_confirmed(self):
        contribution = self.make_pending_contribution(self.membership, 100)
        rejected = contribution_service.reject_contribution(
            contribution.id, self.admin.id, reason='Proof of payment missing'
        )

        self.assertEqual(rejected.status, ContributionStatus.REJECTED.value)
        self.assertEqual(rejected.rejection_reason, 'Proof of payment missing')
        with self.assertRaises(ConflictError):
            contribution_service.confirm_contribution(contribution.id, self.admin.id)
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 0.0)

    def test_detached_contribution_rejected_without_notice(self):
        contribution = self.make_pending_contribution(self.membership, 100)
        Contribution.query.filter_by(id=contribution.id).update(
            {Contribution.user_id: None, Contribution.membership_id: None},
            synchronize_session=False
        )
        db.session.commit()

        with self.assertRaises(ConflictError):
            contribution_service.confirm_contribution(contribution.id, self.admin.id)

        rejected = contribution_service.reject_contribution(contribution.id, self.admin.id)
        self.assertEqual(rejected.status, ContributionStatus.REJECTED.value)
        self.assertEqual(self.notifications_for(self.member), [])

    def test_ledger_matches_confirmed_sum(self):
        amounts = [100, 150, 75]
        contributions = [self.make_pending_contribution(self.membership, a) for a in amounts]
        for contribution in contributions[:2]:
            contribution_service.confirm_contribution(contribution.id, self.admin.id)

        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 250.0)


class TestGatewayConfirmation(ContributionTestCase):
    def test_charge_success_confirms_by_reference(self):
        contribution = self.make_pending_contribution(self.membership, 300)
        confirmed = payment_service.handle_gateway_event('charge.success', contribution.reference)

        self.assertEqual(confirmed.status, ContributionStatus.CONFIRMED.value)
        self.assertIsNone(confirmed.confirmed_by)
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 300.0)

    def test_charge_failed_rejects(self):
        contribution = self.make_pending_contribution(self.membership, 300)
        rejected = payment_service.handle_gateway_event('charge.failed', contribution.reference)

        self.assertEqual(rejected.status, ContributionStatus.REJECTED.value)
        self.assertEqual(self.reload(Membership, self.membership.id).saved_amount, 0.0)

    def test_unknown_event_ignored(self):
        contribution = self.make_pending_contribution(self.membership, 300)
        self.assertIsNone(payment_service.handle_gateway_event('refund.created', contribution.reference))

    def test_wrong_secret_refused(self):
        with self.assertRaises(AuthorizationError):
            payment_service.verify_gateway_secret('not-the-secret')
        self.assertTrue(payment_service.verify_gateway_secret('gateway-test-secret'))


class TestContributionListing(ContributionTestCase):
    def test_group_history_with_stats(self):
        other = self.make_user(name='Lerato Dube')
        other_membership = self.make_membership(other, self.group)
        first = self.make_pending_contribution(self.membership, 100)
        self.make_pending_contribution(self.membership, 200)
        self.make_pending_contribution(other_membership, 50)
        contribution_service.confirm_contribution(first.id, self.admin.id)

        result = contribution_service.list_group_contributions(self.membership.id)

        stats = result['stats']
        self.assertEqual(stats['totalContributions'], 3)
        self.assertEqual(stats['totalCollected'], 350)
        self.assertEqual(stats['confirmedCount'], 1)
        self.assertEqual(stats['pendingCount'], 2)
        self.assertEqual(stats['uniqueMembers'], 2)

        pending = contribution_service.list_group_contributions(self.membership.id, status='pending')
        self.assertEqual(len(pending['contributions']), 2)


if __name__ == '__main__':
    unittest.main()
