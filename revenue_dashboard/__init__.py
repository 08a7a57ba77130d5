"""
Client Revenue Dashboard

Per-user, per-weekday revenue breakdown across packages, emails, chats,
calls and pending invoices, fetched from a table-query webhook.

Usage:
    from revenue_dashboard.dashboard import RevenueDashboard

    async with RevenueDashboard() as dashboard:
        users = await dashboard.load_users()
        view = await dashboard.show_user_chart(users[0])
"""

__version__ = "1.0.0"
