"""
TRUSTCORE - trust-decision core.

Decides whether to allow, challenge or block the requester of a sensitive
action: admin access, admin dashboard entry and account registration.
"""

__version__ = "1.0.0"
