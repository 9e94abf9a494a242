"""
The reactor groups all modules that converge and observe the cluster's objects.

The convergence is the normalization of the desired manifests, the detection
of the changes against the live objects, and the writes needed to apply them
(creation, update, or replacement of the objects).

The observation is the evaluation of the objects' readiness by their kinds,
and the polling until they are ready; and the draining of the nodes.
"""
