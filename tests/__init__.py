"""
Perk Boost Engine Test Suite
============================

Test Organization
-----------------
- tests/unit/          : Pure logic, event bus, config and exceptions (no database)
- tests/integration/   : Services against a real SQLite database file per test

Testing Philosophy
------------------
- Unit tests: fast, isolated, no I/O
- Integration tests: real transactions, real row locking, injected clock
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
