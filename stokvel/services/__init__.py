"""
Services Package
================

Business logic layer for the stokvel ledger.

All ledger, loan and approval operations are handled here.
Routes should call these services, not manipulate models directly.
"""

from stokvel.services.membership_service import (
    create_membership,
    get_membership,
    increment_saved_amount,
    find_outstanding_loan_principal_sum
)

from stokvel.services.contribution_service import (
    add_contribution,
    confirm_contribution,
    confirm_contribution_by_reference,
    reject_contribution
)

from stokvel.services.loan_service import (
    request_loan,
    repay_loan,
    list_loans,
    get_loan_summary
)

from stokvel.services.milestone_service import (
    individual_target_reached,
    group_target_reached
)

from stokvel.services.admin_service import (
    approve_user,
    update_user_status,
    delete_user,
    add_user_to_group
)
