"""Release lifecycle manager (relman).

Stores application releases, turns their process manifests into scheduler
task definitions and promotes them into a running deployment:
 - release persistence with a computed "active" flag
 - task definition registration per manifest process
 - stack parameter updates against the live stack
 - service reconciliation on the container scheduler

Collaborators (scheduler, stack orchestrator, object store) are pluggable so
the same core drives a local docker host or AWS.
"""
