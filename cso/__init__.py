"""Cluster Service Orchestrator (CSO).

Coordinates cluster-wide service lifecycle operations against a cluster
management backend:
 - start-all / stop-all with a NameNode checkpoint safety gate
 - restart of every host component with stale configuration, refreshing
   the YARN capacity scheduler first when the interactive query server needs it
 - a silent full restart (stop-all, settle, start-all)
"""
