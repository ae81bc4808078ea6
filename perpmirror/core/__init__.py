"""`perpmirror.core`: fixed-point computation engine of a perpetual-futures contract.

Every function here is a pure transform over immutable records; all decimal
work runs in a local context, so results never depend on the caller's
decimal settings.
"""
