"""
Memberships app: a Telegram bot that sells time-boxed access to a private channel.

This app handles:
- Inbound Telegram updates and Stripe events (webhooks/)
- The stateless conversation flow (bot/)
- The subscriber lifecycle state machine and payment intake (services/)
- Invite links, channel removal and subscriber notifications
- Expiry reminders and sweeps (tasks.py)

Usage:
    from memberships.services import SubscriberService

    result = SubscriberService.approve(subscriber_id)
"""
