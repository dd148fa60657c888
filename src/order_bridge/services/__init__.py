"""Services module - change feed, order mapping, delivery, correlation and reporting."""
