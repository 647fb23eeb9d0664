"""
API routers for schedule, reservations, recurring rules, subscriptions and payments
"""
