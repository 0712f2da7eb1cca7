import unittest
from datetime import datetime
from stokvel.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from stokvel.extensions import db
from stokvel.models import (
    Contribution, ContributionStatus, Group, Loan, LoanStatus, User, UserRole, UserStatus,
    check_transition, derive_loan_status, CONTRIBUTION_TRANSITIONS, LOAN_TRANSITIONS
)
from stokvel.services import group_service, user_service
from tests.helpers import PASSWORD, AppTestCase


class TestGroups(AppTestCase):
    def test_create_with_config_defaults(self):
        group = group_service.create_group('Masakhane', 1200, 12)

        self.assertEqual(group.interest_rate, 30)
        self.assertEqual(group.overdue_interest_rate, 60)
        self.assertEqual(group.loan_percentage_limit, 50)
        self.assertEqual(group.loan_repayment_days, 30)
        self.assertEqual(group.group_target, 14400)

    def test_invalid_parameters_collected(self):
        with self.assertRaises(ValidationError) as ctx:
            group_service.create_group('', 0, 0, loan_percentage_limit=150)
        self.assertEqual(len(ctx.exception.errors), 4)

    def test_non_numeric_parameters_collected(self):
        with self.assertRaises(ValidationError) as ctx:
            group_service.create_group(
                'Masakhane', '500', 3.5, interest_rate='high', loan_repayment_days=None
            )
        self.assertEqual(ctx.exception.errors, [
            "Target amount must be a number",
            "Max members must be a whole number",
            "Interest rate must be a number",
            "Loan repayment window must be a whole number of days",
        ])

    def test_update_rejects_unknown_fields(self):
        group = group_service.create_group('Masakhane', 1200, 12)
        with self.assertRaises(ValidationError):
            group_service.update_group(group.id, {'created_by': 1})

        updated = group_service.update_group(group.id, {'interest_rate': 25, 'meeting_day': 'Sunday'})
        self.assertEqual(updated.interest_rate, 25)
        self.assertEqual(updated.meeting_day, 'Sunday')

    def test_summary_progress(self):
        group = self.make_group(target_amount=500.0, max_members=4)
        self.make_membership(self.make_user(), group, saved_amount=300.0)
        self.make_membership(self.make_user(name='Lerato Dube'), group, saved_amount=200.0)

        summary = group_service.get_group_summary(group.id)

        self.assertEqual(summary['totalSaved'], 500.0)
        self.assertEqual(summary['groupTarget'], 2000.0)
        self.assertEqual(summary['progress'], 25)
        self.assertEqual(summary['memberCount'], 2)
        self.assertEqual(len(summary['members']), 2)

    def test_unknown_group(self):
        with self.assertRaises(NotFoundError):
            group_service.get_group(404)

    def test_delete_unused_group(self):
        group = self.make_group()
        user_service.register_user('Nomsa Sithole', 'nomsa@example.com', '', 'hunter22',
                                   preferred_group_ids=[group.id])

        self.assertTrue(group_service.delete_group(group.id))
        self.assertIsNone(db.session.get(Group, group.id))
        self.assertEqual(user_service.find_user_by_email('nomsa@example.com').preferred_groups, [])

    def test_delete_blocked_by_members_and_history(self):
        group = self.make_group()
        member = self.make_user()
        membership = self.make_membership(member, group)
        self.make_pending_contribution(membership, 100)

        with self.assertRaises(ConflictError) as ctx:
            group_service.delete_group(group.id)
        self.assertIn('membership', ctx.exception.message)

        db.session.delete(membership)
        db.session.commit()
        with self.assertRaises(ConflictError) as ctx:
            group_service.delete_group(group.id)
        self.assertIn('ledger history', ctx.exception.message)
        self.assertIsNotNone(db.session.get(Group, group.id))


class TestRegistration(AppTestCase):
    def test_register_is_pending_with_preferences(self):
        group = self.make_group()
        user = user_service.register_user(
            'Nomsa Sithole', ' Nomsa@Example.com ', '0831112222', 'hunter22',
            preferred_group_ids=[group.id]
        )

        self.assertEqual(user.status, UserStatus.PENDING.value)
        self.assertEqual(user.email, 'nomsa@example.com')
        self.assertEqual([g.id for g in user.preferred_groups], [group.id])
        self.assertNotEqual(user.password_hash, 'hunter22')

    def test_duplicate_email(self):
        user_service.register_user('Nomsa Sithole', 'nomsa@example.com', '', 'hunter22')
        with self.assertRaises(ConflictError):
            user_service.register_user('Nomsa Again', 'NOMSA@example.com', '', 'hunter22')

    def test_short_password(self):
        with self.assertRaises(ValidationError):
            user_service.register_user('Nomsa Sithole', 'nomsa@example.com', '', '123')

    def test_only_active_users_authenticate(self):
        user = user_service.register_user('Nomsa Sithole', 'nomsa@example.com', '', 'hunter22')
        with self.assertRaises(AuthorizationError):
            user_service.authenticate('nomsa@example.com', 'hunter22')

        user.status = UserStatus.ACTIVE.value
        self.assertEqual(user_service.authenticate('nomsa@example.com', 'hunter22').id, user.id)
        with self.assertRaises(AuthorizationError):
            user_service.authenticate('nomsa@example.com', 'wrong-password')


class TestProfile(AppTestCase):
    def setUp(self):
        super().setUp()
        self.member = self.make_user()

    def test_update_profile(self):
        user = user_service.update_profile(self.member.id, full_name='Thandi Nkosi',
                                           email=' Thandi.Nkosi@Example.com ')

        self.assertEqual(user.full_name, 'Thandi Nkosi')
        self.assertEqual(user.email, 'thandi.nkosi@example.com')
        self.assertEqual(user.phone, '0820000000')

    def test_profile_validation_and_email_clash(self):
        self.make_user(name='Lerato Dube')
        with self.assertRaises(ValidationError) as ctx:
            user_service.update_profile(self.member.id, full_name=' ', phone='')
        self.assertEqual(len(ctx.exception.errors), 2)
        with self.assertRaises(ConflictError):
            user_service.update_profile(self.member.id, email='lerato@example.com')
        self.assertEqual(self.reload(User, self.member.id).email, 'thandi@example.com')

    def test_change_password(self):
        with self.assertRaises(ValidationError):
            user_service.change_password(self.member.id, 'wrong-password', 'newsecret')
        with self.assertRaises(ValidationError):
            user_service.change_password(self.member.id, PASSWORD, '123')

        user_service.change_password(self.member.id, PASSWORD, 'newsecret')
        user = self.reload(User, self.member.id)
        self.assertTrue(user.check_password('newsecret'))
        self.assertFalse(user.check_password(PASSWORD))


class TestTransitions(AppTestCase):
    def test_contribution_terminal_states(self):
        check_transition('Contribution', CONTRIBUTION_TRANSITIONS,
                         ContributionStatus.PENDING.value, ContributionStatus.CONFIRMED.value)
        with self.assertRaises(ConflictError):
            check_transition('Contribution', CONTRIBUTION_TRANSITIONS,
                             ContributionStatus.CONFIRMED.value, ContributionStatus.REJECTED.value)

        contribution = Contribution(status=ContributionStatus.REJECTED.value)
        with self.assertRaises(ConflictError):
            contribution.transition_to(ContributionStatus.CONFIRMED.value)

    def test_loan_repaid_is_terminal(self):
        loan = Loan(status=LoanStatus.OVERDUE.value)
        loan.transition_to(LoanStatus.REPAID.value)
        self.assertEqual(loan.status, LoanStatus.REPAID.value)
        with self.assertRaises(ConflictError):
            loan.transition_to(LoanStatus.ACTIVE.value)
        with self.assertRaises(ConflictError):
            check_transition('Loan', LOAN_TRANSITIONS, LoanStatus.REPAID.value, LoanStatus.REPAID.value)

    def test_derived_status_only_for_active(self):
        due = datetime(2026, 2, 1)
        later = datetime(2026, 2, 2)
        self.assertEqual(derive_loan_status('active', due, later), 'overdue')
        self.assertEqual(derive_loan_status('active', due, due), 'active')
        self.assertEqual(derive_loan_status('repaid', due, later), 'repaid')

    def test_user_roles(self):
        admin = self.make_admin()
        self.assertTrue(admin.is_admin)
        self.assertEqual(admin.role, UserRole.ADMIN.value)
        self.assertTrue(admin.is_active)
        self.assertFalse(User(status=UserStatus.PENDING.value).is_active)


if __name__ == '__main__':
    unittest.main()
