"""Slot storage adapters.

A slot is the request counter of one time bucket. The sliding window depends
on the abstractions in ``base`` only, so counters can live in process memory
(``in_memory``) or in a store shared between processes (``redis_store``).
"""
