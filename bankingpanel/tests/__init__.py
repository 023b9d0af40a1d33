"""
BankingPanel Test Suite

- Query parser, sort selector and result pipeline
- Property-based tests using hypothesis
- Reactive controller (debounce, banker reconciliation, deletion)
- Config-backed stores
"""
