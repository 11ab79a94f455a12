"""
Companies application.

Owns companies, subscription plans, company subscriptions and the
entitlement ledger (CompanyModule / CompanyPermission).
"""
