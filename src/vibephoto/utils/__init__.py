"""
Shared helpers: status mapping, storage key layout, Brazilian validators
"""
