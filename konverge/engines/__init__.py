"""
Engines are things that run around the reactor (see `konverge.reactor`)
to help it to function, but are not part of it: per-object logging,
deadline-bounded sleeping, bounded retries with the random backoffs.
"""
