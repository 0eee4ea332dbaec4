"""ClusterCreator: homelab cluster provisioning and maintenance tooling."""

__version__ = "0.4.0"
