"""Order intake, scheduling, and exactly-once paid-order fulfillment."""
