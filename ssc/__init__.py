"""Sidecar Shutdown Controller (SSC).

Watches pods annotated with their main-process and sidecar containers and,
once the main work is over, execs ``kill -s TERM 1`` in the sidecars that are
still running so the pod can complete.

Pipeline: pod informer -> work queue -> controller -> decision -> dispatcher.
"""
