import unittest
from stokvel.models import Notification, NotificationType
from stokvel.services import contribution_service
from stokvel.services.milestone_service import (
    crossed, group_target_reached, individual_target_reached, plan_milestones
)
from tests.helpers import AppTestCase


class TestMilestonePredicates(unittest.TestCase):
    def test_target_reached_inclusive(self):
        self.assertTrue(individual_target_reached(100, 100))
        self.assertFalse(individual_target_reached(99.99, 100))
        self.assertTrue(group_target_reached(250, 200))

    def test_crossed_only_once(self):
        self.assertTrue(crossed(90, 110, 100))
        self.assertFalse(crossed(100, 120, 100))
        self.assertFalse(crossed(50, 80, 100))

    def test_contributor_never_in_group_notice(self):
        plan = plan_milestones(
            contributor_id=1, saved_before=90, saved_after=110, member_target=100,
            group_before=180, group_after=200, group_target=200, active_member_ids=[1, 2]
        )
        self.assertEqual(plan.individual_recipient, 1)
        self.assertEqual(plan.group_recipients, [2])

        plan = plan_milestones(
            contributor_id=1, saved_before=20, saved_after=40, member_target=100,
            group_before=190, group_after=210, group_target=200, active_member_ids=[1, 2]
        )
        self.assertIsNone(plan.individual_recipient)
        self.assertEqual(plan.group_recipients, [2])

    def test_nothing_to_announce(self):
        plan = plan_milestones(1, 10, 20, 100, 10, 20, 200, [1])
        self.assertTrue(plan.is_empty)


class TestMilestoneFanOut(AppTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.make_admin()
        self.group = self.make_group(target_amount=100.0, max_members=2)
        self.alice = self.make_user(name='Alice Nkosi')
        self.bob = self.make_user(name='Bob Khumalo')
        self.alice_membership = self.make_membership(self.alice, self.group, saved_amount=90.0)
        self.bob_membership = self.make_membership(self.bob, self.group, saved_amount=90.0)

    def milestones_for(self, user):
        return Notification.query.filter_by(
            user_id=user.id, type=NotificationType.MILESTONE.value
        ).all()

    def test_individual_and_group_milestones(self):
        contribution = self.make_pending_contribution(self.alice_membership, 20)
        contribution_service.confirm_contribution(contribution.id, self.admin.id)

        alice_notices = self.milestones_for(self.alice)
        bob_notices = self.milestones_for(self.bob)

        self.assertEqual(len(alice_notices), 1)
        self.assertIn('Congratulations', alice_notices[0].message)
        self.assertEqual(len(bob_notices), 1)
        self.assertIn('group target', bob_notices[0].message)

    def test_milestones_not_repeated(self):
        first = self.make_pending_contribution(self.alice_membership, 20)
        contribution_service.confirm_contribution(first.id, self.admin.id)
        second = self.make_pending_contribution(self.alice_membership, 10)
        contribution_service.confirm_contribution(second.id, self.admin.id)

        self.assertEqual(len(self.milestones_for(self.alice)), 1)
        self.assertEqual(len(self.milestones_for(self.bob)), 1)

    def test_no_milestone_below_targets(self):
        contribution = self.make_pending_contribution(self.alice_membership, 5)
        contribution_service.confirm_contribution(contribution.id, self.admin.id)

        self.assertEqual(self.milestones_for(self.alice), [])
        self.assertEqual(self.milestones_for(self.bob), [])


if __name__ == '__main__':
    unittest.main()
