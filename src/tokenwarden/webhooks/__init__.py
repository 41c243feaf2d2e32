# Outbound webhooks: subscriptions, signing and delivery.
# Created: 2026-03-02
