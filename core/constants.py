# core/constants.py
JOB_OPEN = 'OPEN'
JOB_ASSIGNED = 'ASSIGNED'
JOB_IN_PROGRESS = 'IN_PROGRESS'
JOB_COMPLETED_BY_HUSTLER = 'COMPLETED_BY_HUSTLER'
JOB_AWAITING_CUSTOMER_CONFIRM = 'AWAITING_CUSTOMER_CONFIRM'
JOB_PAID = 'PAID'
JOB_CANCELLED = 'CANCELLED'

JOB_STATUS_CHOICES = (
    (JOB_OPEN, 'Open'),                                  # Posted, accepting offers
    (JOB_ASSIGNED, 'Assigned'),                          # Offer accepted, card pre-authorized
    (JOB_IN_PROGRESS, 'In Progress'),                    # Start code entered
    (JOB_COMPLETED_BY_HUSTLER, 'Completed by Hustler'),  # Completion code issued
    (JOB_AWAITING_CUSTOMER_CONFIRM, 'Awaiting Customer Confirmation'),
    (JOB_PAID, 'Paid'),                                  # Funds captured
    (JOB_CANCELLED, 'Cancelled'),
)

AWAITING_RELEASE_STATUSES = (JOB_COMPLETED_BY_HUSTLER, JOB_AWAITING_CUSTOMER_CONFIRM)
ASSIGNED_OR_LATER_STATUSES = (
    JOB_ASSIGNED, JOB_IN_PROGRESS, JOB_COMPLETED_BY_HUSTLER,
    JOB_AWAITING_CUSTOMER_CONFIRM, JOB_PAID,
)

PAY_TYPE_FLAT = 'flat'
PAY_TYPE_HOURLY = 'hourly'

PAY_TYPE_CHOICES = (
    (PAY_TYPE_FLAT, 'Flat'),
    (PAY_TYPE_HOURLY, 'Hourly'),
)

OFFER_PENDING = 'PENDING'
OFFER_ACCEPTED = 'ACCEPTED'
OFFER_DECLINED = 'DECLINED'

OFFER_STATUS_CHOICES = (
    (OFFER_PENDING, 'Pending'),      # Hustler applied, awaiting customer response
    (OFFER_ACCEPTED, 'Accepted'),
    (OFFER_DECLINED, 'Declined'),
)

PAYMENT_PREAUTHORIZED = 'PREAUTHORIZED'
PAYMENT_CAPTURED = 'CAPTURED'
PAYMENT_REFUNDED = 'REFUNDED'
PAYMENT_VOIDED = 'VOIDED'

PAYMENT_STATUS_CHOICES = (
    (PAYMENT_PREAUTHORIZED, 'Pre-authorized'),
    (PAYMENT_CAPTURED, 'Captured'),
    (PAYMENT_REFUNDED, 'Refunded'),
    (PAYMENT_VOIDED, 'Voided'),
)

PAYOUT_PENDING = 'PENDING'
PAYOUT_PROCESSING = 'PROCESSING'
PAYOUT_COMPLETED = 'COMPLETED'
PAYOUT_FAILED = 'FAILED'

PAYOUT_STATUS_CHOICES = (
    (PAYOUT_PENDING, 'Pending'),        # No payout account yet
    (PAYOUT_PROCESSING, 'Processing'),
    (PAYOUT_COMPLETED, 'Completed'),
    (PAYOUT_FAILED, 'Failed'),
)

CODE_START = 'start'
CODE_COMPLETION = 'completion'

VERIFICATION_KIND_CHOICES = (
    (CODE_START, 'Start'),
    (CODE_COMPLETION, 'Completion'),
)

DISPUTE_OPEN = 'open'
DISPUTE_RESOLVED = 'resolved'

DISPUTE_STATUS_CHOICES = (
    (DISPUTE_OPEN, 'Open'),
    (DISPUTE_RESOLVED, 'Resolved'),
)

DISPUTE_REASON_CHOICES = (
    ('quality', 'Quality of Work'),
    ('no_show', 'No Show'),
    ('payment', 'Payment Issue'),
    ('behavior', 'Behavior'),
    ('other', 'Other'),
)

AUDIT_REFUND = 'REFUND'
AUDIT_VOID = 'VOID'

AUDIT_ACTION_CHOICES = (
    (AUDIT_REFUND, 'Refund'),
    (AUDIT_VOID, 'Void'),
)

PAYMENT_MODE_LIVE = 'live'
PAYMENT_MODE_TEST_BYPASS = 'test_bypass'
