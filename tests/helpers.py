import unittest
from stokvel import create_app
from stokvel.extensions import db
from stokvel.models import (
    User, Group, Membership, Contribution, UserRole, UserStatus,
    ContributionStatus, PaymentMethod
)
from stokvel.services import contribution_service
from config import TestConfig

PASSWORD = 'secret123'


class AppTestCase(unittest.TestCase):
    """Fresh app and in-memory ledger for every test."""

    def setUp(self):
        self.app = create_app(TestConfig)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    # ---------- factories ----------

    def make_user(self, name='Thandi Mokoena', email=None, role=UserRole.MEMBER.value,
                  status=UserStatus.ACTIVE.value):
        email = email or f"{name.split()[0].lower()}@example.com"
        user = User(full_name=name, email=email, phone='0820000000', role=role, status=status)
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()
        return user

    def make_admin(self, name='Sipho Admin', email='admin@example.com'):
        return self.make_user(name=name, email=email, role=UserRole.ADMIN.value)

    def make_group(self, name='Ubuntu Savers', target_amount=1000.0, max_members=10, **fields):
        group = Group(name=name, target_amount=target_amount, max_members=max_members, **fields)
        db.session.add(group)
        db.session.commit()
        return group

    def make_membership(self, user, group, saved_amount=0.0, target_amount=None):
        membership = Membership(
            user_id=user.id,
            group_id=group.id,
            target_amount=group.target_amount if target_amount is None else target_amount,
            saved_amount=saved_amount
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    def make_pending_contribution(self, membership, amount):
        """Insert a pending contribution directly, bypassing submission rules."""
        contribution = Contribution(
            user_id=membership.user_id,
            group_id=membership.group_id,
            membership_id=membership.id,
            amount=amount,
            payment_method=PaymentMethod.CASH.value,
            reference=contribution_service.generate_reference(),
            status=ContributionStatus.PENDING.value
        )
        db.session.add(contribution)
        db.session.commit()
        return contribution

    def reload(self, model, obj_id):
        return db.session.get(model, obj_id, populate_existing=True)

    def login(self, user, password=PASSWORD):
        return self.client.post('/api/auth/login', json={'email': user.email, 'password': password})
