"""Core transaction lifecycle: signing, submission, reconciliation, balance."""
