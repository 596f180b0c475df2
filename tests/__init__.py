"""
Tests Module
============

Unit tests and integration tests for the rebalancing engine.

Test Categories:
- unit/: optimizer, scheduler, execution algorithms, routing, analytics
- integration/: end-to-end portfolio manager cycle

Author: Algo Trading Platform
License: MIT
"""
