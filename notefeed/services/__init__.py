"""Feed services.

- NotificationNormalizer: raw record -> NotificationItem
- NotificationDeduplicator / NotificationIndex: one item per logical event
- PaginationFetcher: newest-first pages and reload mode
- StreamSubscriber: live main-channel events
- NotificationFeedController / FeedRegistry: per-account feed state
"""
