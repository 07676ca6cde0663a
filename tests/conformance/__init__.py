"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the energy exchange.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Money and energy are neither created nor destroyed by settlement
2. matching.py - Price rule, eligibility, sign rules, agreement with the naive scan
3. atomicity.py - A settlement commits completely or not at all
4. idempotency.py - Settling again without new activity changes nothing
5. determinism.py - Identical snapshots settle identically

These tests use hypothesis for property-based testing.
"""
