"""Transactional event outbox feeding the posting rule engine."""
