"""Turn/action processing helpers.

This package centralizes seat assignment and move validation so every entry
point into the session store goes through the same checks.
"""
