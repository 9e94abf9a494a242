"""
All the routines to talk to Kubernetes API.

Beware: this is NOT a Kubernetes client. It is a set of dedicated adapters
tailored to the reconciliation, readiness, and draining needs, not the generic
Kubernetes object manipulation. The rest of the library talks to the cluster
only through the accessor (see `konverge.clients.accessors`), so that the API
calls can be replaced with in-memory fakes in the tests.
"""
